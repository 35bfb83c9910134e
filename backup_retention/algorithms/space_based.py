from ..models import FileCandidate, RetentionPolicy
from .base import CleanupAlgorithm, oldest_first


class SpaceBasedAlgorithm(CleanupAlgorithm):
    uses_free_space = True
    stops_when_satisfied = True

    def is_active(self, policy: RetentionPolicy) -> bool:
        return bool(policy.disk_free_enabled)

    def order(self, candidates: list[FileCandidate]) -> list[FileCandidate]:
        return oldest_first(candidates)

    def should_delete(
        self,
        candidate: FileCandidate,
        policy: RetentionPolicy,
        current_free_gib: int | None,
        now: float,
    ) -> bool:
        if current_free_gib is None:
            raise ValueError("current_free_gib is required in space mode")
        return int(current_free_gib) < int(policy.min_free_gib)
