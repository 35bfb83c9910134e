from ..models import FileCandidate, RetentionPolicy
from .base import CleanupAlgorithm, oldest_first
from .space_based import SpaceBasedAlgorithm
from .time_based import TimeBasedAlgorithm


class CombinedAlgorithm(CleanupAlgorithm):
    """Old enough *and* short on space, evaluated per file."""

    uses_free_space = True

    def __init__(self) -> None:
        self._time = TimeBasedAlgorithm()
        self._space = SpaceBasedAlgorithm()

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
        if not self._time.should_delete(candidate, policy, current_free_gib, now):
            return False
        return self._space.should_delete(candidate, policy, current_free_gib, now)
