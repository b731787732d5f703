"""Nearest-occurrence substring lookup over one source text.

A PositionIndex is bound to a single source text and lives for one labeling
call. Occurrence lists are computed lazily, once per distinct substring, and
looked up with a binary search around the model's claimed offset.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Offset drift beyond this is worth a debug line.
_LARGE_DRIFT = 100


@dataclass
class IndexTelemetry:
    total_requests: int = 0
    exact_matches: int = 0
    failures: int = 0


class PositionIndex:
    """Occurrence cache for one source text.

    Construct a new index per call; never share one across requests.
    """

    def __init__(self, text: str) -> None:
        self._text = text
        self._occurrences: dict[str, list[int]] = {}
        self._telemetry = IndexTelemetry()

    @property
    def text(self) -> str:
        return self._text

    def telemetry(self) -> IndexTelemetry:
        t = self._telemetry
        return IndexTelemetry(t.total_requests, t.exact_matches, t.failures)

    def occurrences(self, substring: str) -> list[int]:
        """Sorted start offsets of every (possibly overlapping) occurrence."""
        cached = self._occurrences.get(substring)
        if cached is not None:
            return cached

        found: list[int] = []
        idx = self._text.find(substring)
        while idx != -1:
            found.append(idx)
            idx = self._text.find(substring, idx + 1)

        self._occurrences[substring] = found
        return found

    def find_best_match(self, substring: str, preferred_start: int | None = 0) -> tuple[int, int] | None:
        """Locate ``substring`` nearest ``preferred_start``.

        Args:
            substring: Exact text to locate. Empty strings never match.
            preferred_start: Offset hint from the model. Anything that is
                not a non-negative int is treated as 0.

        Returns:
            ``(start, end)`` of the closest occurrence, ties going to the
            smaller offset, or None when the text does not occur.
        """
        if not substring:
            return None

        self._telemetry.total_requests += 1
        occ = self.occurrences(substring)
        if not occ:
            self._telemetry.failures += 1
            logger.debug("[PositionIndex] not found: %r", substring[:50])
            return None

        self._telemetry.exact_matches += 1
        length = len(substring)
        if len(occ) == 1:
            return occ[0], occ[0] + length

        preferred = preferred_start
        if not isinstance(preferred, int) or isinstance(preferred, bool) or preferred < 0:
            preferred = 0

        if preferred <= occ[0]:
            return occ[0], occ[0] + length
        if preferred >= occ[-1]:
            return occ[-1], occ[-1] + length

        # occ[pos - 1] < preferred <= occ[pos]
        pos = bisect.bisect_left(occ, preferred)
        before, after = occ[pos - 1], occ[pos]
        best = before if preferred - before <= after - preferred else after

        if preferred and abs(best - preferred) > _LARGE_DRIFT:
            logger.debug(
                "[PositionIndex] large offset drift for %r: preferred=%d found=%d",
                substring[:50], preferred, best,
            )
        return best, best + length
