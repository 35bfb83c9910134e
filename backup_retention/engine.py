from __future__ import annotations

import logging
import time
from typing import Iterable

from .algorithms import ALGORITHM_REGISTRY, CleanupAlgorithm
from .disk import DiskSpaceProbe
from .log import human_readable_size
from .models import GIB, CategoryResult, FileCandidate, RetentionPolicy


LOGGER = logging.getLogger("backup_retention")


class RetentionEngine:
    """Applies a retention policy to one list of candidates.

    Space and both modes walk candidates oldest-first and read the disk probe
    before every decision. Space mode stops as soon as the free-space target is
    met. In a dry run nothing is unlinked; the bytes that would have been freed
    are added to the probed free space so decisions match a real run.
    """

    def __init__(self, *, probe: DiskSpaceProbe | None = None, now: float | None = None):
        self._probe = probe or DiskSpaceProbe()
        self._now = time.time() if now is None else float(now)

    @property
    def now(self) -> float:
        return self._now

    def algorithm_for(self, policy: RetentionPolicy) -> CleanupAlgorithm:
        return ALGORITHM_REGISTRY[policy.mode]

    def should_delete(self, candidate: FileCandidate, policy: RetentionPolicy, current_free_gib: int | None) -> bool:
        return self.algorithm_for(policy).should_delete(candidate, policy, current_free_gib, self._now)

    def apply(
        self,
        candidates: Iterable[FileCandidate],
        policy: RetentionPolicy,
        *,
        dry_run: bool = False,
    ) -> CategoryResult:
        algorithm = self.algorithm_for(policy)
        result = CategoryResult()

        if not algorithm.is_active(policy):
            LOGGER.info(
                "[CLEANUP]: Mode '%s' requires disk free checks, which are disabled. Nothing to delete.",
                policy.mode.value,
            )
            return result

        ordered = algorithm.order(list(candidates))
        if algorithm.uses_free_space:
            LOGGER.info("[CLEANUP]: Processing %d files oldest first for '%s' mode.", len(ordered), policy.mode.value)

        simulated_freed = 0
        for candidate in ordered:
            if not candidate.path.is_file():
                LOGGER.debug("[CLEANUP]: File '%s' not found during processing. Skipping.", candidate.path)
                continue

            current_free_gib: int | None = None
            if algorithm.uses_free_space:
                free_bytes = self._probe.free_bytes(policy.target_path)
                current_free_gib = (free_bytes + simulated_freed) // GIB
                if algorithm.stops_when_satisfied and current_free_gib >= int(policy.min_free_gib):
                    LOGGER.info(
                        "[CLEANUP]: Target disk free space (%s GB) reached with %s GB free. Stopping deletions.",
                        policy.min_free_gib,
                        current_free_gib,
                    )
                    break

            if not algorithm.should_delete(candidate, policy, current_free_gib, self._now):
                LOGGER.debug(
                    "[CLEANUP]: Keeping '%s' (age %d days, free %s GB).",
                    candidate.path,
                    candidate.age_days(self._now),
                    current_free_gib,
                )
                continue

            if not self._remove(candidate, policy, dry_run=dry_run):
                result.failed_count += 1
                continue

            result.deleted_count += 1
            result.bytes_freed += candidate.size_bytes
            if dry_run:
                simulated_freed += candidate.size_bytes

        return result

    def _remove(self, candidate: FileCandidate, policy: RetentionPolicy, *, dry_run: bool) -> bool:
        size_text = human_readable_size(candidate.size_bytes)
        if dry_run:
            LOGGER.info(
                "[CLEANUP]: [Dry Run] Would remove '%s' (Size: %s). Mode: '%s'.",
                candidate.path,
                size_text,
                policy.mode.value,
            )
            return True

        try:
            candidate.path.unlink()
        except FileNotFoundError:
            LOGGER.debug("[CLEANUP]: File '%s' disappeared before removal. Skipping.", candidate.path)
            return False
        except OSError as exc:
            LOGGER.error("[CLEANUP]: Failed to remove file '%s': %s", candidate.path, exc)
            return False

        LOGGER.info(
            "[CLEANUP]: Removed '%s' (Size: %s). Mode: '%s'.",
            candidate.path,
            size_text,
            policy.mode.value,
        )
        return True
