"""
Hazard Classifier - Priority Cascade.

Turns one frame's scan statistics plus the device tilt into exactly
one HazardState. First matching rule wins, in configured order.

Default order:
1. Obstacle close (immediate collision risk outranks everything)
2. Phone tilted too high (not looking at the path)
3. Descending staircase
4. Deep drop-off
5. Phone tilted too low
6. Clear

A pure function of its inputs: no I/O, no clocks, no state.
"""

from __future__ import annotations

from typing import Optional, Callable, Dict, List

from pathguard.core.contracts import ScanStatistics, HazardKind, HazardState
from pathguard.core.config import HazardThresholds


Rule = Callable[[ScanStatistics, Optional[float]], bool]


class HazardClassifier:
    """
    Deterministic hazard decision.

    Staircase and drop-off share the deep-pixel condition; a staircase
    additionally needs the far half of the ROI to read measurably
    deeper than the near half. A deep-pixel count alone cannot tell a
    staircase from a ledge.
    """

    def __init__(self, thresholds: Optional[HazardThresholds] = None):
        """
        Initialize classifier.

        Args:
            thresholds: Fractions, stair gap, tilt limits and priority order

        Raises:
            ValueError: priority lists CLEAR or repeats a hazard kind
        """
        self.thresholds = thresholds or HazardThresholds()
        self._validate_priority(self.thresholds.priority)

        self._rules: Dict[HazardKind, Rule] = {
            HazardKind.OBSTACLE_CLOSE: self._is_obstacle_close,
            HazardKind.TILT_TOO_HIGH: self._is_tilt_too_high,
            HazardKind.STAIRCASE: self._is_staircase,
            HazardKind.DEEP_DROP_OFF: self._is_deep_drop_off,
            HazardKind.TILT_TOO_LOW: self._is_tilt_too_low,
        }

    @staticmethod
    def _validate_priority(priority: List[HazardKind]):
        if HazardKind.CLEAR in priority:
            raise ValueError("CLEAR is the fallback and cannot appear in the priority order")
        if len(set(priority)) != len(priority):
            raise ValueError(f"Duplicate hazard kinds in priority order: {priority}")

    def classify(
        self,
        stats: ScanStatistics,
        tilt: Optional[float],
    ) -> HazardState:
        """
        Classify one frame.

        Args:
            stats: Region scanner output
            tilt: Forward tilt indicator, or None when the pose is unavailable

        Returns:
            Exactly one HazardState (never labelled here)
        """
        if stats.total_scanned_pixels <= 0:
            return HazardState.clear()

        for kind in self.thresholds.priority:
            if self._rules[kind](stats, tilt):
                return HazardState(kind)

        return HazardState.clear()

    # --- rules ---

    def _is_obstacle_close(self, stats: ScanStatistics, tilt: Optional[float]) -> bool:
        limit = stats.total_scanned_pixels * self.thresholds.obstacle_fraction
        return stats.close_pixel_count > limit

    def _has_deep_surface(self, stats: ScanStatistics) -> bool:
        limit = stats.total_scanned_pixels * self.thresholds.drop_fraction
        return stats.deep_pixel_count > limit

    def _has_stair_signature(self, stats: ScanStatistics) -> bool:
        return (
            stats.upper_average_depth_mm
            > stats.lower_average_depth_mm + self.thresholds.stair_gap_mm
        )

    def _is_staircase(self, stats: ScanStatistics, tilt: Optional[float]) -> bool:
        return self._has_deep_surface(stats) and self._has_stair_signature(stats)

    def _is_deep_drop_off(self, stats: ScanStatistics, tilt: Optional[float]) -> bool:
        return self._has_deep_surface(stats) and not self._has_stair_signature(stats)

    def _is_tilt_too_high(self, stats: ScanStatistics, tilt: Optional[float]) -> bool:
        return tilt is not None and tilt > self.thresholds.tilt_high_threshold

    def _is_tilt_too_low(self, stats: ScanStatistics, tilt: Optional[float]) -> bool:
        return tilt is not None and tilt < self.thresholds.tilt_low_threshold
