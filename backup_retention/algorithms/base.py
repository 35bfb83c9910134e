from __future__ import annotations

from abc import ABC, abstractmethod

from ..models import FileCandidate, RetentionPolicy


class CleanupAlgorithm(ABC):
    uses_free_space: bool = False
    stops_when_satisfied: bool = False

    def is_active(self, policy: RetentionPolicy) -> bool:
        """Return False when the policy switches this algorithm off entirely."""
        return True

    def order(self, candidates: list[FileCandidate]) -> list[FileCandidate]:
        return list(candidates)

    @abstractmethod
    def should_delete(
        self,
        candidate: FileCandidate,
        policy: RetentionPolicy,
        current_free_gib: int | None,
        now: float,
    ) -> bool:
        """Return True when *candidate* must be removed under *policy*."""


def oldest_first(candidates: list[FileCandidate]) -> list[FileCandidate]:
    return sorted(candidates, key=lambda item: float(item.modified_at))
