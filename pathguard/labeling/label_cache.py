"""
Label Cache.

Single writer (the labeler worker) and single reader (the frame loop).
Reads are snapshot reads under a lock; the frame loop never waits on
a labeler. Results that arrive out of order are discarded.
"""

from __future__ import annotations

import threading
from typing import Optional
from loguru import logger

from pathguard.core.contracts import LabelResult
from pathguard.labeling.base import LabelCandidate


class LabelCache:
    """
    Last accepted object label.

    A result is accepted only when:
    - its confidence clears the floor
    - its request id is newer than the last accepted one

    Requests may overlap when a backend is slower than the request
    cooldown; their results still land as long as they arrive in order.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._current: Optional[LabelResult] = None
        self._last_issued_id = 0
        self._last_accepted_id = 0

        self._accepted = 0
        self._rejected = 0

    def next_request_id(self) -> int:
        """Issue a request id, increasing with every request."""
        with self._lock:
            self._last_issued_id += 1
            return self._last_issued_id

    def offer(
        self,
        request_id: int,
        candidate: Optional[LabelCandidate],
        min_confidence: float,
        timestamp: float,
        backend: str = "",
    ) -> bool:
        """
        Offer a labeler result.

        Returns:
            True if the cache was updated
        """
        if candidate is None:
            return False

        with self._lock:
            if request_id <= self._last_accepted_id:
                self._rejected += 1
                logger.debug(
                    f"Discarding out-of-order label '{candidate.label}' "
                    f"(request {request_id}, already have {self._last_accepted_id})"
                )
                return False

            if candidate.confidence < min_confidence:
                self._rejected += 1
                logger.debug(
                    f"Discarding low-confidence label '{candidate.label}' "
                    f"({candidate.confidence:.2f} < {min_confidence:.2f})"
                )
                return False

            self._current = LabelResult(
                label=candidate.label,
                confidence=candidate.confidence,
                timestamp=timestamp,
                request_id=request_id,
                backend=backend,
            )
            self._last_accepted_id = request_id
            self._accepted += 1

        logger.info(f"Obstacle label: {candidate.label} ({candidate.confidence:.2f}, {backend})")
        return True

    def snapshot(self) -> Optional[LabelResult]:
        with self._lock:
            return self._current

    @property
    def label(self) -> Optional[str]:
        current = self.snapshot()
        return current.label if current else None

    def expire(self, now: float, timeout_seconds: float, last_obstacle: Optional[float] = None) -> bool:
        """
        Clear the label once the path has been clear for longer than the timeout.

        Args:
            now: Current time in seconds
            timeout_seconds: How long a label outlives its obstacle
            last_obstacle: Time of the last obstacle frame, if any

        Returns:
            True if the label was cleared
        """
        with self._lock:
            if self._current is None:
                return False
            seen = self._current.timestamp
            if last_obstacle is not None:
                seen = max(seen, last_obstacle)
            if now - seen <= timeout_seconds:
                return False
            stale = self._current
            self._current = None

        logger.debug(f"Label '{stale.label}' expired")
        return True

    def clear(self):
        with self._lock:
            self._current = None

    @property
    def accepted_count(self) -> int:
        return self._accepted

    @property
    def rejected_count(self) -> int:
        return self._rejected
