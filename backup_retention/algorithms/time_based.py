from ..models import FileCandidate, RetentionPolicy
from .base import CleanupAlgorithm


class TimeBasedAlgorithm(CleanupAlgorithm):
    def should_delete(
        self,
        candidate: FileCandidate,
        policy: RetentionPolicy,
        current_free_gib: int | None,
        now: float,
    ) -> bool:
        return candidate.age_days(now) >= int(policy.retain_days)
