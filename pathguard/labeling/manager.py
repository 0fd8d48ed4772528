"""
Labeler Manager.

Engine-facing side of object labeling:
- request cooldown (bounds inference cost)
- request ids so results applied out of order are dropped
- lazy backend (re)initialization on a runtime switch
- fallback to the other backend when one fails to initialize

Never blocks the frame loop.
"""

from __future__ import annotations

import functools
import time
from typing import Optional, Callable, Set

import numpy as np
from numpy.typing import NDArray
from loguru import logger

from pathguard.core.config import LabelerBackend, LabelerConfig
from pathguard.labeling.base import BaseLabeler, LabelCandidate
from pathguard.labeling.label_cache import LabelCache


LabelerFactory = Callable[[LabelerBackend, LabelerConfig], BaseLabeler]


def _default_factory(backend: LabelerBackend, config: LabelerConfig) -> BaseLabeler:
    from pathguard.labeling import get_labeler

    return get_labeler(backend, config)


class LabelerManager:
    """
    Owns the active labeler backend and the label cache feed.

    Usage:
        manager = LabelerManager(config, LabelerBackend.CLASSIFIER, cache)
        manager.start()

        # obstacle frames only:
        manager.request(rgb_crop, rotation_degrees=90)

        manager.stop()
    """

    def __init__(
        self,
        config: Optional[LabelerConfig] = None,
        backend: LabelerBackend = LabelerBackend.CLASSIFIER,
        cache: Optional[LabelCache] = None,
        clock: Callable[[], float] = time.monotonic,
        factory: Optional[LabelerFactory] = None,
        on_backend_fallback: Optional[Callable[[LabelerBackend], None]] = None,
    ):
        """
        Initialize labeler manager.

        Args:
            config: Labeler configuration
            backend: Requested backend
            cache: Label cache fed by completed requests
            clock: Monotonic clock in seconds
            factory: Builds a labeler for a backend (registry by default)
            on_backend_fallback: Called with the backend reverted to after an init failure
        """
        self.config = config or LabelerConfig()
        self.cache = cache or LabelCache()
        self._clock = clock
        self._factory = factory or _default_factory
        self.on_backend_fallback = on_backend_fallback

        self._backend = backend
        self._labeler: Optional[BaseLabeler] = None
        self._failed: Set[LabelerBackend] = set()
        self._running = False
        self._last_request_time: Optional[float] = None

    @property
    def backend(self) -> LabelerBackend:
        return self._backend

    @property
    def labeling_available(self) -> bool:
        return self._backend not in self._failed

    def start(self):
        """Enable requests. The backend itself initializes lazily."""
        self._running = True

    def stop(self):
        self._running = False
        self._stop_labeler()

    def set_backend(self, backend: LabelerBackend):
        """Switch backend at runtime. The new one initializes on first use."""
        if backend is self._backend and self._labeler is not None:
            return
        if backend is not self._backend:
            logger.info(f"Labeler backend: {self._backend.value} -> {backend.value}")
        self._stop_labeler()
        self._backend = backend
        # An explicit user choice gets a fresh attempt
        self._failed.discard(backend)

    def poll(self):
        """Notice backend init failures without waiting for the next request."""
        if self._labeler is not None and self._labeler.init_error is not None:
            self._handle_init_failure(self._labeler.init_error)

    def request(
        self,
        image: NDArray[np.uint8],
        rotation_degrees: Optional[int] = None,
        now: Optional[float] = None,
    ) -> Optional[int]:
        """
        Fire a label request if the cooldown allows.

        Returns:
            Request id, or None if nothing was submitted
        """
        if not self._running:
            return None

        if now is None:
            now = self._clock()
        cooldown = self.config.request_cooldown_ms / 1000.0
        if self._last_request_time is not None and now - self._last_request_time < cooldown:
            return None

        labeler = self._ensure_labeler()
        if labeler is None:
            return None

        if rotation_degrees is None:
            rotation_degrees = self.config.rotation_degrees

        request_id = self.cache.next_request_id()
        callback = functools.partial(self._on_result, self._backend)
        try:
            labeler.identify(image, rotation_degrees, request_id, callback)
        except Exception as e:
            logger.warning(f"Label request {request_id} failed to submit: {e}")
            return None

        self._last_request_time = now
        return request_id

    def _ensure_labeler(self) -> Optional[BaseLabeler]:
        self.poll()

        if self._labeler is not None:
            return self._labeler
        if self._backend in self._failed:
            return None

        try:
            labeler = self._factory(self._backend, self.config)
            labeler.start()
        except Exception as e:
            self._handle_init_failure(e)
            return self._ensure_labeler() if self._backend not in self._failed else None

        self._labeler = labeler
        logger.info(f"Initializing {self._backend.value} labeler")
        return labeler

    def _handle_init_failure(self, error: Exception):
        failed = self._backend
        self._failed.add(failed)
        self._stop_labeler()
        logger.warning(f"{failed.value} labeler unavailable: {error}")

        fallback = failed.other
        if fallback in self._failed:
            logger.error("No labeler backend available, continuing without object labels")
            return

        self._backend = fallback
        logger.warning(f"Falling back to {fallback.value} labeler")
        if self.on_backend_fallback is not None:
            try:
                self.on_backend_fallback(fallback)
            except Exception as e:
                logger.error(f"Backend fallback callback failed: {e}")

    def _on_result(
        self,
        backend: LabelerBackend,
        request_id: int,
        candidate: Optional[LabelCandidate],
    ):
        # Runs on the labeler worker thread
        self.cache.offer(
            request_id,
            candidate,
            min_confidence=self.config.min_confidence_for(backend),
            timestamp=self._clock(),
            backend=backend.value,
        )

    def _stop_labeler(self):
        if self._labeler is None:
            return
        try:
            self._labeler.stop()
        except Exception as e:
            logger.warning(f"Error stopping labeler: {e}")
        self._labeler = None
