"""
Core data contracts for the Perception & Alert Decision Engine.

All components must adhere to these contracts for:
- Deterministic behavior
- One hazard decision per frame
- No frame retained past the call that scanned it
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Callable, Any
import numpy as np
from numpy.typing import NDArray

from pathguard.core.errors import InvalidRegionError, DepthDecodeError


# ============================================================
# ENUMERATIONS
# ============================================================

class HazardKind(Enum):
    """Mutually exclusive hazard outcomes for one frame."""
    CLEAR = "clear"
    OBSTACLE_CLOSE = "obstacle_close"
    TILT_TOO_HIGH = "tilt_too_high"
    TILT_TOO_LOW = "tilt_too_low"
    STAIRCASE = "staircase"
    DEEP_DROP_OFF = "deep_drop_off"


# ============================================================
# DEPTH DATA
# ============================================================

@dataclass(frozen=True)
class DepthSample:
    """One decoded distance reading at a pixel coordinate."""
    x: int
    y: int
    distance_mm: int

    @property
    def is_valid(self) -> bool:
        # 0 is "unknown", never a real distance
        return self.distance_mm > 0


@dataclass
class DepthFrame:
    """
    A depth buffer of unsigned 16-bit millimetre distances.

    Owned by the caller for one frame. The scanner calls release()
    when it is done, on every exit path. release() is idempotent and
    forwards to the optional on_release hook exactly once, which is
    where a hardware-backed image gets closed.

    Strides are in bytes: the sample at (x, y) starts at
    y * row_stride + x * pixel_stride, low byte first.
    """
    width: int
    height: int
    row_stride: int
    pixel_stride: int
    buffer: Any  # bytes-like
    timestamp_ms: float = 0.0
    on_release: Optional[Callable[[], None]] = None

    _released: bool = field(default=False, init=False, repr=False)

    @classmethod
    def from_array(
        cls,
        depth_mm: NDArray[np.uint16],
        timestamp_ms: float = 0.0,
        on_release: Optional[Callable[[], None]] = None,
    ) -> DepthFrame:
        """Build a tightly packed little-endian frame from an H x W array."""
        depth = np.ascontiguousarray(depth_mm, dtype="<u2")
        if depth.ndim != 2:
            raise DepthDecodeError(f"Expected a 2-D depth array, got shape {depth.shape}")
        height, width = depth.shape
        return cls(
            width=width,
            height=height,
            row_stride=width * 2,
            pixel_stride=2,
            buffer=depth.tobytes(),
            timestamp_ms=timestamp_ms,
            on_release=on_release,
        )

    def as_bytes(self) -> NDArray[np.uint8]:
        """Zero-copy uint8 view of the underlying buffer."""
        if self._released:
            raise DepthDecodeError("Depth frame already released")
        return np.frombuffer(self.buffer, dtype=np.uint8)

    def sample(self, x: int, y: int) -> DepthSample:
        """Decode a single pixel."""
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise DepthDecodeError(f"Pixel ({x}, {y}) outside {self.width}x{self.height} frame")
        raw = self.as_bytes()
        offset = y * self.row_stride + x * self.pixel_stride
        if offset + 1 >= raw.size:
            raise DepthDecodeError(f"Offset {offset} outside buffer of {raw.size} bytes")
        distance = int(raw[offset]) | (int(raw[offset + 1]) << 8)
        return DepthSample(x=x, y=y, distance_mm=distance)

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        if self.on_release is not None:
            self.on_release()

    @property
    def is_released(self) -> bool:
        return self._released

    def __enter__(self) -> DepthFrame:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


@dataclass(frozen=True)
class RegionOfInterest:
    """
    Fractional sub-rectangle of the frame that is actually analyzed.

    Bounds are relative to frame width / height so the region scales
    with any depth resolution. lower_band_start optionally restricts
    deep-pixel counting to rows at or below that fraction of the
    frame height (the floor-facing part of the region).
    """
    left: float = 0.15
    right: float = 0.85
    top: float = 0.20
    bottom: float = 0.75
    lower_band_start: Optional[float] = None

    def __post_init__(self):
        for name in ("left", "right", "top", "bottom"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise InvalidRegionError(f"ROI {name}={value} outside [0, 1]")
        if not self.left < self.right:
            raise InvalidRegionError(f"ROI left={self.left} must be < right={self.right}")
        if not self.top < self.bottom:
            raise InvalidRegionError(f"ROI top={self.top} must be < bottom={self.bottom}")
        if self.lower_band_start is not None and not 0.0 <= self.lower_band_start <= 1.0:
            raise InvalidRegionError(
                f"ROI lower_band_start={self.lower_band_start} outside [0, 1]"
            )


@dataclass(frozen=True)
class ScanStatistics:
    """Aggregate statistics for one scanned frame. Immutable."""
    close_pixel_count: int = 0
    deep_pixel_count: int = 0
    total_scanned_pixels: int = 0
    upper_average_depth_mm: float = 0.0
    lower_average_depth_mm: float = 0.0
    upper_sample_count: int = 0
    lower_sample_count: int = 0

    @property
    def close_fraction(self) -> float:
        if self.total_scanned_pixels == 0:
            return 0.0
        return self.close_pixel_count / self.total_scanned_pixels

    @property
    def deep_fraction(self) -> float:
        if self.total_scanned_pixels == 0:
            return 0.0
        return self.deep_pixel_count / self.total_scanned_pixels

    @property
    def depth_gap_mm(self) -> float:
        """How much deeper the far (upper) half reads than the near half."""
        return self.upper_average_depth_mm - self.lower_average_depth_mm


# ============================================================
# DECISION + ALERT DATA
# ============================================================

@dataclass(frozen=True)
class HazardState:
    """
    The single classified outcome of one frame.

    Only OBSTACLE_CLOSE may carry a label.
    """
    kind: HazardKind = HazardKind.CLEAR
    label: Optional[str] = None

    def __post_init__(self):
        if self.label is not None and self.kind is not HazardKind.OBSTACLE_CLOSE:
            raise ValueError(f"Only obstacle hazards carry a label, got {self.kind.value}")

    @property
    def is_clear(self) -> bool:
        return self.kind is HazardKind.CLEAR

    @classmethod
    def clear(cls) -> HazardState:
        return cls(HazardKind.CLEAR)


@dataclass(frozen=True)
class LabelResult:
    """Best-effort object label produced by a labeler backend."""
    label: str
    confidence: float
    timestamp: float = 0.0  # seconds, engine clock
    request_id: int = 0
    backend: str = ""


@dataclass(frozen=True)
class VisualUpdate:
    """Banner state. Applied by the platform adapter on its UI thread."""
    text: str = ""
    color: str = "#FFFFFF"
    visible: bool = False


@dataclass(frozen=True)
class AlertEffects:
    """
    Channel effects produced by one dispatch.

    The dispatcher only describes effects; sinks perform them.
    """
    hazard: HazardState
    visual: VisualUpdate
    haptic: bool = False
    speech: Optional[str] = None

    @property
    def has_feedback(self) -> bool:
        return self.haptic or self.speech is not None
