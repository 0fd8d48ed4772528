"""
Single-shot detector backend (ultralytics YOLO).

Runs YOLOv8 detection on the obstacle crop. Non-max suppression over
the class confidences happens inside predict(); the surviving box with
the highest confidence names the obstacle.

Requirements:
    - ultralytics
    - torch
"""

from __future__ import annotations

from typing import Optional, Dict, Sequence

import cv2
import numpy as np
from numpy.typing import NDArray
from loguru import logger

from pathguard.core.errors import LabelerInitError
from pathguard.labeling.base import AsyncLabeler, LabelCandidate


def best_detection(
    class_ids: Sequence[int],
    confidences: Sequence[float],
    names: Dict[int, str],
) -> Optional[LabelCandidate]:
    """Highest-confidence detection that maps to a known class name."""
    best: Optional[LabelCandidate] = None
    for class_id, confidence in zip(class_ids, confidences):
        name = names.get(int(class_id))
        if name is None:
            continue
        if best is None or confidence > best.confidence:
            best = LabelCandidate(label=name, confidence=float(confidence))
    return best


class YOLODetectorLabeler(AsyncLabeler):
    """
    YOLO-based obstacle labeler.

    Features:
        - Automatic GPU detection (CUDA > MPS > CPU) when device="auto"
        - NMS with configurable confidence / IoU thresholds
    """

    name = "detector"

    def __init__(self, config=None):
        super().__init__(config)
        self.model = None
        self.device = self.config.device

    def _select_device(self) -> str:
        if self.config.device != "auto":
            return self.config.device

        import torch

        if torch.cuda.is_available():
            return "cuda"
        if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
            return "mps"
        return "cpu"

    def _load_model(self) -> None:
        try:
            from ultralytics import YOLO
        except ImportError as e:
            raise LabelerInitError(f"ultralytics not available: {e}") from e

        self.device = self._select_device()
        try:
            self.model = YOLO(self.config.detector_model)
        except Exception as e:
            raise LabelerInitError(f"Failed to load {self.config.detector_model}: {e}") from e
        logger.info(f"YOLO detector loaded ({self.config.detector_model}, {self.device})")

    def _infer(self, image: NDArray[np.uint8]) -> Optional[LabelCandidate]:
        # ultralytics expects BGR arrays
        bgr = cv2.cvtColor(image, cv2.COLOR_RGB2BGR)
        results = self.model.predict(
            bgr,
            conf=self.config.detector_min_confidence,
            iou=self.config.detector_iou,
            imgsz=self.config.detector_input_size,
            device=self.device,
            verbose=False,
        )
        if not results:
            return None

        result = results[0]
        boxes = result.boxes
        if boxes is None or len(boxes) == 0:
            return None

        class_ids = boxes.cls.cpu().numpy().astype(int)
        confidences = boxes.conf.cpu().numpy()
        return best_detection(class_ids, confidences, result.names)

    def _release_model(self) -> None:
        self.model = None
