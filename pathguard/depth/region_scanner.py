"""
Strided Region-of-Interest Depth Scanner.

Walks a sub-grid of the depth buffer restricted to the ROI and
produces aggregate statistics for the hazard classifier:
- close-pixel count (collision risk)
- deep-pixel count (drop-offs / stairs)
- upper vs lower half average depth (stair signature)

Sampling every `step` pixels in both axes bounds the per-frame cost.
Counts are reported against the number of visited grid points, so
the step size does not bias detection sensitivity.
"""

from __future__ import annotations

from typing import Tuple
import numpy as np
from numpy.typing import NDArray
from loguru import logger

from pathguard.core.contracts import DepthFrame, RegionOfInterest, ScanStatistics
from pathguard.core.errors import DepthDecodeError, InvalidRegionError


PixelBounds = Tuple[int, int, int, int]  # start_x, end_x, start_y, end_y


def pixel_bounds(width: int, height: int, roi: RegionOfInterest) -> PixelBounds:
    """
    Convert fractional ROI bounds to integer pixel bounds.

    Truncates (never rounds) so the striding grid is fixed for a
    given resolution. End bounds are exclusive.
    """
    start_x = max(0, min(width, int(width * roi.left)))
    end_x = max(0, min(width, int(width * roi.right)))
    start_y = max(0, min(height, int(height * roi.top)))
    end_y = max(0, min(height, int(height * roi.bottom)))
    return start_x, end_x, start_y, end_y


def sample_grid(
    width: int,
    height: int,
    roi: RegionOfInterest,
    step: int,
) -> Tuple[NDArray[np.int64], NDArray[np.int64]]:
    """Row and column coordinates visited by a scan."""
    if step < 1:
        raise InvalidRegionError(f"Scan step must be >= 1, got {step}")
    start_x, end_x, start_y, end_y = pixel_bounds(width, height, roi)
    ys = np.arange(start_y, end_y, step, dtype=np.int64)
    xs = np.arange(start_x, end_x, step, dtype=np.int64)
    return ys, xs


class RegionScanner:
    """
    Scans a depth frame inside a region of interest.

    Guarantees:
    - Never reads outside [0, width) x [0, height) or past the buffer
    - Releases the frame on every exit path
    - Zero readings (unknown) are excluded from every count
    """

    def __init__(
        self,
        obstacle_limit_mm: int = 1200,
        drop_off_limit_mm: int = 4000,
    ):
        """
        Initialize region scanner.

        Args:
            obstacle_limit_mm: Readings in (0, limit) count as close
            drop_off_limit_mm: Readings above this count as deep
        """
        self.obstacle_limit_mm = obstacle_limit_mm
        self.drop_off_limit_mm = drop_off_limit_mm

    def scan(
        self,
        frame: DepthFrame,
        roi: RegionOfInterest,
        step: int,
    ) -> ScanStatistics:
        """
        Scan the ROI of a depth frame with a fixed stride.

        Args:
            frame: Depth frame; released before this returns
            roi: Fractional region of interest
            step: Sampling stride in pixels

        Returns:
            ScanStatistics for the visited grid points

        Raises:
            InvalidRegionError: step < 1
            DepthDecodeError: frame geometry does not fit its buffer
        """
        try:
            return self._scan(frame, roi, step)
        finally:
            frame.release()

    def _scan(
        self,
        frame: DepthFrame,
        roi: RegionOfInterest,
        step: int,
    ) -> ScanStatistics:
        if frame.width <= 0 or frame.height <= 0:
            raise DepthDecodeError(f"Empty depth frame {frame.width}x{frame.height}")

        ys, xs = sample_grid(frame.width, frame.height, roi, step)
        total = int(ys.size * xs.size)
        if total == 0:
            logger.debug("Degenerate scan bounds, nothing sampled")
            return ScanStatistics()

        depth = self._decode_grid(frame, ys, xs)
        valid = depth > 0

        close = valid & (depth < self.obstacle_limit_mm)

        deep = depth > self.drop_off_limit_mm
        if roi.lower_band_start is not None:
            band_y = int(frame.height * roi.lower_band_start)
            deep &= (ys >= band_y)[:, None]

        start_y, end_y = pixel_bounds(frame.width, frame.height, roi)[2:]
        mid_y = start_y + (end_y - start_y) // 2
        upper_rows = (ys < mid_y)[:, None]

        upper_valid = valid & upper_rows
        lower_valid = valid & ~upper_rows
        upper_count = int(upper_valid.sum())
        lower_count = int(lower_valid.sum())
        upper_avg = float(depth[upper_valid].mean()) if upper_count else 0.0
        lower_avg = float(depth[lower_valid].mean()) if lower_count else 0.0

        stats = ScanStatistics(
            close_pixel_count=int(close.sum()),
            deep_pixel_count=int(deep.sum()),
            total_scanned_pixels=total,
            upper_average_depth_mm=upper_avg,
            lower_average_depth_mm=lower_avg,
            upper_sample_count=upper_count,
            lower_sample_count=lower_count,
        )
        logger.debug(
            f"Scan: {total} pts, close={stats.close_fraction:.2f}, "
            f"deep={stats.deep_fraction:.2f}, gap={stats.depth_gap_mm:.0f}mm"
        )
        return stats

    def _decode_grid(
        self,
        frame: DepthFrame,
        ys: NDArray[np.int64],
        xs: NDArray[np.int64],
    ) -> NDArray[np.int64]:
        """Decode little-endian uint16 samples at every grid point."""
        raw = frame.as_bytes()
        offsets = ys[:, None] * frame.row_stride + xs[None, :] * frame.pixel_stride

        if offsets.min() < 0 or offsets.max() + 1 >= raw.size:
            raise DepthDecodeError(
                f"Scan offsets [{offsets.min()}, {offsets.max() + 1}] exceed "
                f"buffer of {raw.size} bytes ({frame.width}x{frame.height}, "
                f"row_stride={frame.row_stride}, pixel_stride={frame.pixel_stride})"
            )

        low = raw[offsets].astype(np.int64)
        high = raw[offsets + 1].astype(np.int64)
        return low | (high << 8)
