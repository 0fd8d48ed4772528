"""
Multi-label image classifier backend (MediaPipe Tasks).

Classifies the whole obstacle crop and reports the best category.
Cheap and fast; the default backend.

Requirements:
    - mediapipe
    - an image classifier .tflite model (e.g. efficientnet_lite0)
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import numpy as np
from numpy.typing import NDArray
from loguru import logger

from pathguard.core.errors import LabelerInitError
from pathguard.labeling.base import AsyncLabeler, LabelCandidate


class MediaPipeClassifierLabeler(AsyncLabeler):
    """
    MediaPipe ImageClassifier labeler.

    Usage:
        labeler = MediaPipeClassifierLabeler(config)
        labeler.start()
        labeler.identify(rgb_crop, 90, request_id, on_label)
    """

    name = "classifier"

    def __init__(self, config=None):
        super().__init__(config)
        self._classifier = None

    def _load_model(self) -> None:
        model_path = Path(self.config.classifier_model).expanduser()
        if not model_path.exists():
            raise LabelerInitError(f"Classifier model not found: {model_path}")

        try:
            from mediapipe.tasks import python as mp_tasks
            from mediapipe.tasks.python import vision
        except ImportError as e:
            raise LabelerInitError(f"mediapipe not available: {e}") from e

        options = vision.ImageClassifierOptions(
            base_options=mp_tasks.BaseOptions(model_asset_path=str(model_path)),
            max_results=self.config.classifier_max_results,
        )
        self._classifier = vision.ImageClassifier.create_from_options(options)
        logger.info(f"MediaPipe classifier loaded ({model_path.name})")

    def _infer(self, image: NDArray[np.uint8]) -> Optional[LabelCandidate]:
        import mediapipe as mp

        mp_image = mp.Image(
            image_format=mp.ImageFormat.SRGB,
            data=np.ascontiguousarray(image),
        )
        result = self._classifier.classify(mp_image)
        if not result.classifications:
            return None

        categories = result.classifications[0].categories
        if not categories:
            return None

        best = max(categories, key=lambda c: c.score)
        label = best.display_name or best.category_name
        return LabelCandidate(label=label, confidence=float(best.score))

    def _release_model(self) -> None:
        if self._classifier is not None:
            self._classifier.close()
            self._classifier = None
