"""
Base class for object labelers.

A labeler names the obstacle in front of the user. It is strictly
best-effort: the engine fires a request and never waits for it.

To add a new labeler backend:
1. Create a new file in the labeling/ directory
2. Inherit from AsyncLabeler
3. Implement _load_model() and _infer()
4. Register in labeling/__init__.py LABELERS dict

Example implementation:
    class MyLabeler(AsyncLabeler):
        name = "mine"

        def _load_model(self):
            self.model = load_my_model(self.config.my_model)

        def _infer(self, image):
            label, score = self.model.top1(image)
            return LabelCandidate(label, score)
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from queue import Queue, Empty, Full
from typing import Optional, Callable

import cv2
import numpy as np
from numpy.typing import NDArray
from loguru import logger

from pathguard.core.contracts import RegionOfInterest
from pathguard.core.config import LabelerConfig
from pathguard.core.errors import LabelerError, LabelerInitError


@dataclass(frozen=True)
class LabelCandidate:
    """Raw (label, confidence) from a backend, before any floor is applied."""
    label: str
    confidence: float


# callback(request_id, candidate or None); None means failure or nothing found
LabelCallback = Callable[[int, Optional[LabelCandidate]], None]

_ROTATIONS = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def crop_to_region(
    image: NDArray[np.uint8],
    roi: RegionOfInterest,
) -> NDArray[np.uint8]:
    """Crop an H x W x C image to fractional ROI bounds (truncating)."""
    h, w = image.shape[:2]
    x0, x1 = int(w * roi.left), int(w * roi.right)
    y0, y1 = int(h * roi.top), int(h * roi.bottom)
    if x1 <= x0 or y1 <= y0:
        return image
    return image[y0:y1, x0:x1]


def rotate_image(image: NDArray[np.uint8], rotation_degrees: int) -> NDArray[np.uint8]:
    """Rotate clockwise by a multiple of 90 degrees."""
    rotation = rotation_degrees % 360
    if rotation == 0:
        return image
    if rotation not in _ROTATIONS:
        raise LabelerError(f"Rotation must be a multiple of 90, got {rotation_degrees}")
    return cv2.rotate(image, _ROTATIONS[rotation])


class BaseLabeler(ABC):
    """Abstract base class for object labelers.

    Attributes:
        name: Backend name as used in configuration
    """

    name: str = "base"

    @abstractmethod
    def start(self) -> None:
        """Begin initializing the backend. Must not block on model loading."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop the backend. Must not wait for model loading or inference."""
        pass

    @abstractmethod
    def identify(
        self,
        image: NDArray[np.uint8],
        rotation_degrees: int,
        request_id: int,
        callback: LabelCallback,
    ) -> None:
        """Submit an image region. Non-blocking; callback fires at most once, eventually or never."""
        pass

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        """Model loaded and worker running."""
        pass

    @property
    @abstractmethod
    def init_error(self) -> Optional[Exception]:
        """Set when the backend failed to initialize."""
        pass


class AsyncLabeler(BaseLabeler):
    """
    Fire-and-forget labeler running inference on a background thread.

    The model loads on the worker thread. Requests go through a
    single-slot queue: a newer request replaces one still waiting, so
    a slow backend only ever works on the latest obstacle.

    stop() only signals the worker. The worker releases its own model
    once it is done loading or inferring, so stopping never waits.
    """

    def __init__(self, config: Optional[LabelerConfig] = None):
        self.config = config or LabelerConfig()

        self._queue: Queue = Queue(maxsize=1)
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self._ready = threading.Event()
        self._init_error: Optional[Exception] = None

        self._inference_times: list[float] = []

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        # Fresh queue and stop flag per worker; an old worker may still be winding down
        self._queue = Queue(maxsize=1)
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._worker,
            args=(self._queue, self._stop_event),
            daemon=True,
            name=f"labeler-{self.name}",
        )
        self._thread.start()

    def stop(self) -> None:
        """Signal the worker to exit. Returns immediately."""
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        self._ready.clear()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the last worker to exit (for tools and tests, not the frame loop)."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    @property
    def init_error(self) -> Optional[Exception]:
        return self._init_error

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the model is loaded (for tools and tests, not the frame loop)."""
        return self._ready.wait(timeout)

    def identify(
        self,
        image: NDArray[np.uint8],
        rotation_degrees: int,
        request_id: int,
        callback: LabelCallback,
    ) -> None:
        if not self._running or self._init_error is not None:
            return

        # Drop any request still waiting; only the latest obstacle matters
        while not self._queue.empty():
            try:
                self._queue.get_nowait()
            except Empty:
                break
        try:
            self._queue.put_nowait((image, rotation_degrees, request_id, callback))
        except Full:
            logger.debug(f"{self.name}: queue busy, request {request_id} skipped")

    def _worker(self, requests: Queue, stop_event: threading.Event) -> None:
        try:
            self._load_model()
        except Exception as e:
            if not stop_event.is_set():
                self._init_error = e if isinstance(e, LabelerInitError) else LabelerInitError(str(e))
                self._running = False
                logger.error(f"{self.name} labeler failed to initialize: {e}")
            return

        try:
            if stop_event.is_set():
                logger.debug(f"{self.name} labeler stopped while loading")
                return

            self._ready.set()
            logger.info(f"{self.name} labeler ready")

            while not stop_event.is_set():
                try:
                    image, rotation, request_id, callback = requests.get(timeout=0.1)
                except Empty:
                    continue
                self._run_request(image, rotation, request_id, callback)
        finally:
            self._release_model()
            logger.debug(f"{self.name} labeler worker exited")

    def _run_request(
        self,
        image: NDArray[np.uint8],
        rotation: int,
        request_id: int,
        callback: LabelCallback,
    ) -> None:
        candidate: Optional[LabelCandidate] = None
        start = time.perf_counter()
        try:
            prepared = rotate_image(image, rotation)
            candidate = self._infer(prepared)
        except Exception as e:
            logger.warning(f"{self.name} inference failed for request {request_id}: {e}")
            candidate = None
        finally:
            self._record_inference_time((time.perf_counter() - start) * 1000)

        try:
            callback(request_id, candidate)
        except Exception as e:
            logger.error(f"Label callback failed: {e}")

    def _record_inference_time(self, time_ms: float):
        self._inference_times.append(time_ms)
        if len(self._inference_times) > 100:
            self._inference_times.pop(0)

    @property
    def average_inference_time_ms(self) -> float:
        if not self._inference_times:
            return 0.0
        return sum(self._inference_times) / len(self._inference_times)

    @abstractmethod
    def _load_model(self) -> None:
        """Load the model. Raise on failure; runs on the worker thread."""
        pass

    @abstractmethod
    def _infer(self, image: NDArray[np.uint8]) -> Optional[LabelCandidate]:
        """Best label for an RGB image, or None."""
        pass

    def _release_model(self) -> None:
        pass
