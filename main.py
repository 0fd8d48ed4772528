#!/usr/bin/env python3
"""
PathGuard - Perception & Alert Decision Engine

Replays a recorded depth session through the decision engine and
delivers the alerts on the desktop (log banner + spoken alerts).

Usage:
    python main.py --recording DIR [--config CONFIG_PATH] [--display]

Keyboard Controls (with --display):
    D     - Toggle object labeling
    H     - Toggle haptic channel
    S     - Toggle speech channel
    B     - Switch labeler backend (classifier / detector)
    Q     - Quit

Recording format:
    One .npz per frame with depth (uint16 mm), pose (4x4 or 16 floats),
    optional color (RGB) and timestamp_ms. See pathguard/capture.
"""

from __future__ import annotations

import argparse
import sys
import time
from dataclasses import replace
from pathlib import Path
from typing import Optional

import cv2
import numpy as np
from loguru import logger

from pathguard.core.config import EngineConfig, LabelerBackend, load_config
from pathguard.core.contracts import RegionOfInterest
from pathguard.capture.depth_recording import DepthRecordingSource
from pathguard.alerts.sinks import SpeechAlertSink
from pathguard.engine.frame_loop import PerceptionEngine, FrameResult


# ============================================================
# LOGGING CONFIGURATION
# ============================================================

def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """Configure logging."""
    logger.remove()  # Remove default handler

    # Console output with colors
    logger.add(
        sys.stderr,
        level=log_level,
        format="<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{module}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>",
        colorize=True,
    )

    # File output
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {module}:{line} | {message}",
            rotation="10 MB",
            retention="7 days",
        )


# ============================================================
# DEPTH PREVIEW
# ============================================================

def hex_to_bgr(color: str) -> tuple:
    """'#RRGGBB' -> OpenCV BGR tuple."""
    value = color.lstrip("#")
    r, g, b = int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)
    return (b, g, r)


class DepthPreview:
    """Shows the depth frame, the scanned region and the alert banner."""

    def __init__(
        self,
        roi: RegionOfInterest,
        window_name: str = "PathGuard",
        max_depth_mm: float = 5000.0,
    ):
        self.roi = roi
        self.window_name = window_name
        self.max_depth_mm = max_depth_mm

        cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)

    def render(self, depth: np.ndarray, result: Optional[FrameResult], fps: float = 0):
        """Render a depth frame with overlay information."""
        scaled = cv2.convertScaleAbs(depth, alpha=255.0 / self.max_depth_mm)
        frame = cv2.applyColorMap(scaled, cv2.COLORMAP_JET)
        frame[depth == 0] = 0

        h, w = frame.shape[:2]
        x0, x1 = int(w * self.roi.left), int(w * self.roi.right)
        y0, y1 = int(h * self.roi.top), int(h * self.roi.bottom)
        cv2.rectangle(frame, (x0, y0), (x1, y1), (255, 255, 255), 1)

        cv2.putText(
            frame, f"FPS: {fps:.1f}", (10, 20),
            cv2.FONT_HERSHEY_SIMPLEX, 0.5, (0, 255, 0), 1
        )

        if result is not None:
            stats = result.stats
            cv2.putText(
                frame,
                f"close {stats.close_fraction:.2f}  deep {stats.deep_fraction:.2f}",
                (10, 40), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (200, 200, 200), 1
            )
            visual = result.effects.visual
            if visual.visible:
                cv2.putText(
                    frame, visual.text.encode("ascii", "ignore").decode(), (10, h - 15),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.8, hex_to_bgr(visual.color), 2
                )

        cv2.imshow(self.window_name, frame)

    def close(self):
        cv2.destroyAllWindows()


# ============================================================
# MAIN APPLICATION
# ============================================================

class ReplayApp:
    """Drives a recorded session through the engine."""

    def __init__(
        self,
        config: EngineConfig,
        recording: str,
        fps: float = 15.0,
        display: bool = False,
        loop: bool = False,
    ):
        self.config = config
        self.fps = fps

        self.source = DepthRecordingSource(recording, loop=loop)
        # speech_enabled only gates the channel, so S can turn it on later
        sink = SpeechAlertSink(
            rate=config.alerts.speech_rate,
            haptic_pulse_ms=config.alerts.haptic_pulse_ms,
        )
        self.engine = PerceptionEngine(config, sink=sink)
        self.preview = DepthPreview(config.scan.roi) if display else None

        self._quit = False

    def handle_key(self, key: int):
        """Runtime toggles, applied through update_settings."""
        settings = self.engine.settings
        if key == ord('q'):
            self._quit = True
        elif key == ord('d'):
            self.engine.update_settings(replace(settings, detection_enabled=not settings.detection_enabled))
        elif key == ord('h'):
            self.engine.update_settings(replace(settings, haptic_enabled=not settings.haptic_enabled))
        elif key == ord('s'):
            self.engine.update_settings(replace(settings, speech_enabled=not settings.speech_enabled))
        elif key == ord('b'):
            self.engine.update_settings(replace(settings, classifier_backend=settings.classifier_backend.other))

    def run(self):
        """Run the replay loop."""
        logger.info("Starting PathGuard replay")
        self.engine.start()

        frame_interval = 1.0 / self.fps if self.fps > 0 else 0.0
        frame_count = 0
        start_time = time.time()

        try:
            for recorded in self.source:
                tick = time.time()

                if recorded is None:
                    self.engine.provide_frame(None, None)
                    continue

                result = self.engine.provide_frame(
                    recorded.to_depth_frame(),
                    recorded.pose,
                    recorded.color,
                    self.config.labeler.rotation_degrees,
                )

                frame_count += 1
                elapsed = time.time() - start_time
                fps = frame_count / elapsed if elapsed > 0 else 0

                if self.preview is not None:
                    self.preview.render(recorded.depth, result, fps)
                    key = cv2.waitKey(1) & 0xFF
                    if key != 0xFF:
                        self.handle_key(key)

                if self._quit:
                    break

                remaining = frame_interval - (time.time() - tick)
                if remaining > 0:
                    time.sleep(remaining)

        except KeyboardInterrupt:
            logger.info("Interrupted by user")
        finally:
            self.engine.stop()
            if self.preview is not None:
                self.preview.close()
            logger.info(
                f"Replay finished: {self.engine.frame_count} frames, "
                f"{self.engine.skipped_count} skipped, "
                f"avg latency {self.engine.average_latency_ms:.2f}ms"
            )


# ============================================================
# ENTRY POINT
# ============================================================

def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="PathGuard - Perception & Alert Decision Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to configuration file",
    )

    parser.add_argument(
        "--recording", "-r",
        type=str,
        required=True,
        help="Directory of recorded .npz depth frames",
    )

    parser.add_argument(
        "--backend",
        type=str,
        default=None,
        choices=[b.value for b in LabelerBackend],
        help="Object labeler backend (default: from settings)",
    )

    parser.add_argument("--no-haptic", action="store_true", help="Disable haptic alerts")
    parser.add_argument("--no-speech", action="store_true", help="Disable spoken alerts")
    parser.add_argument("--no-detection", action="store_true", help="Disable object labeling")

    parser.add_argument(
        "--fps",
        type=float,
        default=15.0,
        help="Replay rate, 0 for as fast as possible (default: 15)",
    )

    parser.add_argument("--loop", action="store_true", help="Replay the session forever")
    parser.add_argument("--display", action="store_true", help="Show the depth preview window")

    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "--log-file",
        type=str,
        default="logs/pathguard.log",
        help="Log file path (default: logs/pathguard.log)",
    )

    args = parser.parse_args()

    # Setup logging
    setup_logging(args.log_level, args.log_file)

    config = load_config(args.config)
    settings = config.settings
    if args.backend:
        settings.classifier_backend = LabelerBackend(args.backend)
    if args.no_haptic:
        settings.haptic_enabled = False
    if args.no_speech:
        settings.speech_enabled = False
    if args.no_detection:
        settings.detection_enabled = False

    try:
        app = ReplayApp(
            config,
            args.recording,
            fps=args.fps,
            display=args.display,
            loop=args.loop,
        )
    except FileNotFoundError as e:
        logger.error(str(e))
        sys.exit(1)

    app.run()


if __name__ == "__main__":
    main()
