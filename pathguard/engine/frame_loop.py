"""
Frame Loop.

Runs the per-frame decision sequence in strict order:

1. Scan the region of interest of the depth frame (frame released here)
2. Estimate device tilt from the pose
3. Classify exactly one hazard state
4. Fire an obstacle label request (obstacle frames only, never awaited)
5. Attach the cached label to an obstacle hazard
6. Dispatch rate-limited alert effects to the sink

Nothing in here is fatal: every failure maps to a skipped frame or a
Clear hazard.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import Optional, Callable, Any

import numpy as np
from numpy.typing import NDArray
from loguru import logger

from pathguard.core.contracts import (
    DepthFrame,
    ScanStatistics,
    HazardKind,
    HazardState,
    AlertEffects,
)
from pathguard.core.config import EngineConfig, LabelerBackend, RuntimeSettings, SettingsStore
from pathguard.core.errors import (
    FrameUnavailableError,
    DepthDecodeError,
    InvalidRegionError,
    PoseError,
    LabelerError,
)
from pathguard.depth.region_scanner import RegionScanner
from pathguard.pose.tilt_estimator import PoseAngleEstimator
from pathguard.hazard.classifier import HazardClassifier
from pathguard.alerts.dispatcher import AlertDispatcher
from pathguard.alerts.sinks import AlertSink, LoggingAlertSink
from pathguard.labeling.base import crop_to_region
from pathguard.labeling.label_cache import LabelCache
from pathguard.labeling.manager import LabelerManager


@dataclass
class FrameResult:
    """Outcome of one processed frame."""
    hazard: HazardState
    effects: AlertEffects
    stats: ScanStatistics
    tilt: Optional[float] = None
    label_request_id: Optional[int] = None
    latency_ms: float = 0.0


class PerceptionEngine:
    """
    Per-frame perception and alert decision engine.

    Usage:
        engine = PerceptionEngine(load_config(), sink=SpeechAlertSink())
        engine.start()
        for frame, pose, rgb in source:
            engine.provide_frame(frame, pose, rgb)
        engine.stop()

    Guarantees:
    - Exactly one hazard per processed frame
    - The depth frame is released before provide_frame returns
    - Never waits on a labeler
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        sink: Optional[AlertSink] = None,
        labeler_manager: Optional[LabelerManager] = None,
        settings_store: Optional[SettingsStore] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize perception engine.

        Args:
            config: Engine configuration (defaults if omitted)
            sink: Where alert effects go (logging sink if omitted)
            labeler_manager: Object labeling (built from config if omitted)
            settings_store: Persists runtime settings after a backend fallback
            clock: Monotonic clock in seconds
        """
        self.config = config or EngineConfig()
        self.sink = sink or LoggingAlertSink(self.config.alerts.haptic_pulse_ms)
        self._clock = clock

        if settings_store is None and self.config.settings_path:
            settings_store = SettingsStore(self.config.settings_path)
        self._settings_store = settings_store

        self.settings = replace(self.config.settings)

        self._scanner = RegionScanner(
            obstacle_limit_mm=self.config.scan.obstacle_limit_mm,
            drop_off_limit_mm=self.config.scan.drop_off_limit_mm,
        )
        self._estimator = PoseAngleEstimator()
        self._classifier = HazardClassifier(self.config.hazard)
        self._dispatcher = AlertDispatcher(self.config.alerts, clock=clock)

        if labeler_manager is None:
            labeler_manager = LabelerManager(
                config=self.config.labeler,
                backend=self.settings.classifier_backend,
                cache=LabelCache(),
                clock=clock,
            )
        self._labels = labeler_manager
        self._labels.on_backend_fallback = self._on_backend_fallback

        self._dispatcher.set_channels(self.settings.haptic_enabled, self.settings.speech_enabled)

        self._running = False
        self._frame_count = 0
        self._skipped_count = 0
        self._last_obstacle_time: Optional[float] = None
        self._latencies: list[float] = []

        logger.info("Perception engine initialized")

    # ============================================================
    # LIFECYCLE
    # ============================================================

    def start(self):
        if self._running:
            return
        self._call_sink("start")
        if self.settings.detection_enabled:
            self._labels.start()
        self._running = True
        logger.info(
            f"Perception engine started (labels: {self.settings.detection_enabled}, "
            f"backend: {self._labels.backend.value})"
        )

    def stop(self):
        if not self._running:
            return
        self._running = False
        self._labels.stop()
        self._call_sink("stop")
        logger.info(f"Perception engine stopped after {self._frame_count} frames")

    @property
    def is_running(self) -> bool:
        return self._running

    def update_settings(self, settings: RuntimeSettings):
        """Apply user toggles while running."""
        previous = self.settings
        self.settings = replace(settings)

        self._dispatcher.set_channels(settings.haptic_enabled, settings.speech_enabled)

        if settings.classifier_backend is not previous.classifier_backend:
            self._labels.set_backend(settings.classifier_backend)

        if settings.detection_enabled != previous.detection_enabled:
            if settings.detection_enabled:
                if self._running:
                    self._labels.start()
            else:
                self._labels.stop()
                self._labels.cache.clear()

        logger.info(f"Settings updated: {self.settings.to_dict()}")

    def _on_backend_fallback(self, backend: LabelerBackend):
        self.settings.classifier_backend = backend
        if self._settings_store is not None:
            self._settings_store.save(self.settings)

    # ============================================================
    # FRAME PROCESSING
    # ============================================================

    def provide_frame(
        self,
        depth_frame: Optional[DepthFrame],
        pose: Any,
        color_image: Optional[NDArray[np.uint8]] = None,
        rotation: Optional[int] = None,
    ) -> Optional[FrameResult]:
        """
        Process one depth frame.

        Args:
            depth_frame: Depth frame (released before return), None if not ready
            pose: Device pose, 4x4 matrix or 16-value column-major array
            color_image: Optional RGB image for obstacle labeling
            rotation: Clockwise rotation hint for the color image (degrees)

        Returns:
            FrameResult, or None if the frame was skipped
        """
        start = time.perf_counter()
        try:
            if depth_frame is None:
                raise FrameUnavailableError("No depth frame this cycle")
            return self._process(depth_frame, pose, color_image, rotation, start)
        except FrameUnavailableError as e:
            self._skipped_count += 1
            logger.debug(f"Frame skipped: {e}")
            return None
        except Exception:
            self._skipped_count += 1
            logger.exception("Unexpected error while processing frame")
            return None
        finally:
            if depth_frame is not None:
                depth_frame.release()

    def process_raw(
        self,
        buffer: Any,
        width: int,
        height: int,
        row_stride: int,
        pixel_stride: int,
        pose: Any,
        color_image: Optional[NDArray[np.uint8]] = None,
        rotation: Optional[int] = None,
        timestamp_ms: float = 0.0,
        on_release: Optional[Callable[[], None]] = None,
    ) -> Optional[FrameResult]:
        """Process a raw depth buffer with explicit byte strides."""
        frame = DepthFrame(
            width=width,
            height=height,
            row_stride=row_stride,
            pixel_stride=pixel_stride,
            buffer=buffer,
            timestamp_ms=timestamp_ms,
            on_release=on_release,
        )
        return self.provide_frame(frame, pose, color_image, rotation)

    def _process(
        self,
        depth_frame: DepthFrame,
        pose: Any,
        color_image: Optional[NDArray[np.uint8]],
        rotation: Optional[int],
        start: float,
    ) -> FrameResult:
        now = self._clock()
        self._frame_count += 1

        # Steps 1-3
        try:
            stats = self._scanner.scan(depth_frame, self.config.scan.roi, self.config.scan.step)
            tilt = self._estimator.tilt(pose) if pose is not None else None
        except (DepthDecodeError, InvalidRegionError, PoseError) as e:
            logger.warning(f"Frame {self._frame_count} unusable, treating as clear: {e}")
            return self._emit(HazardState.clear(), ScanStatistics(), None, None, now, start)

        hazard = self._classifier.classify(stats, tilt)

        # Steps 4-5
        request_id = None
        if self.settings.detection_enabled:
            self._labels.poll()
            if hazard.kind is HazardKind.OBSTACLE_CLOSE:
                self._last_obstacle_time = now
                request_id = self._request_label(color_image, rotation, now)
                hazard = HazardState(HazardKind.OBSTACLE_CLOSE, label=self._labels.cache.label)
            else:
                self._labels.cache.expire(
                    now,
                    self.config.labeler.label_timeout_ms / 1000.0,
                    last_obstacle=self._last_obstacle_time,
                )

        return self._emit(hazard, stats, tilt, request_id, now, start)

    def _request_label(
        self,
        color_image: Optional[NDArray[np.uint8]],
        rotation: Optional[int],
        now: float,
    ) -> Optional[int]:
        if color_image is None:
            return None
        try:
            image = color_image
            if self.config.labeler.crop_to_roi:
                image = crop_to_region(color_image, self.config.scan.roi)
            return self._labels.request(image, rotation, now)
        except LabelerError as e:
            logger.warning(f"Label request failed: {e}")
            return None

    def _emit(
        self,
        hazard: HazardState,
        stats: ScanStatistics,
        tilt: Optional[float],
        request_id: Optional[int],
        now: float,
        start: float,
    ) -> FrameResult:
        # Step 6
        effects = self._dispatcher.dispatch(hazard, now)
        self._call_sink("apply", effects)

        latency_ms = (time.perf_counter() - start) * 1000
        self._latencies.append(latency_ms)
        if len(self._latencies) > 100:
            self._latencies.pop(0)

        return FrameResult(
            hazard=hazard,
            effects=effects,
            stats=stats,
            tilt=tilt,
            label_request_id=request_id,
            latency_ms=latency_ms,
        )

    def _call_sink(self, method: str, *args):
        try:
            getattr(self.sink, method)(*args)
        except Exception as e:
            logger.error(f"Alert sink {method} failed: {e}")

    # ============================================================
    # STATISTICS
    # ============================================================

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def skipped_count(self) -> int:
        return self._skipped_count

    @property
    def average_latency_ms(self) -> float:
        if not self._latencies:
            return 0.0
        return sum(self._latencies) / len(self._latencies)

    @property
    def label_cache(self) -> LabelCache:
        return self._labels.cache

    @property
    def dispatcher(self) -> AlertDispatcher:
        return self._dispatcher
