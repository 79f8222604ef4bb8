"""
face_tracker.py — Face Detection Backends
==========================================

Finds faces in individual frames and reports them as `Rect`s in
absolute frame pixels.  The framing controller only ever sees those
rectangles; which detector produced them is irrelevant to it.

Two backends:
  • HaarFaceDetector (default) — OpenCV cascade classifier.  Ships
    with opencv-python, no model download.  The frame is converted to
    grayscale, optionally halved a few times (pyramid levels) to make
    detection cheaper, and histogram-equalised.  Boxes are scaled
    back to full resolution.
  • MediaPipeFaceDetector — Google MediaPipe Face Detection.  Fewer
    false positives, needs `pip install camtrack[mediapipe]`.

Both are initialised ONCE and reused for every frame.

Dependencies:
  pip install opencv-python-headless numpy
  pip install mediapipe        (optional backend)
"""

import logging
import os
from typing import List, Optional

import cv2
import numpy as np

from camtrack import config
from camtrack.services.geometry import Rect

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════
# 1. OPENCV CASCADE
# ═════════════════════════════════════════════════════════════

class HaarFaceDetector:
    """
    Cascade-classifier face detector.

    Usage:
        with HaarFaceDetector(pyramid_levels=1) as detector:
            faces = detector.detect(frame)      # → List[Rect]
    """

    def __init__(
        self,
        cascade_path: Optional[str] = None,
        scale_factor: float = config.HAAR_SCALE_FACTOR,
        min_neighbors: int = config.HAAR_MIN_NEIGHBORS,
        min_size_divisor: int = config.MIN_SIZE_DIVISOR,
        pyramid_levels: int = config.DETECTION_PYRAMID_LEVELS,
    ):
        """
        Args:
            cascade_path:     Cascade XML.  Defaults to OpenCV's bundled
                              frontal-face cascade.
            scale_factor:     Image-pyramid step of the classifier.
            min_neighbors:    Overlapping hits needed to accept a face.
            min_size_divisor: Smallest face = detection width / divisor;
                              largest = 10× that.
            pyramid_levels:   Number of pyrDown halvings before detection.

        Raises:
            ValueError:        Invalid parameters.
            FileNotFoundError: Cascade file missing.
            RuntimeError:      Cascade failed to load.
        """
        if min_size_divisor < 1:
            raise ValueError(f"min_size_divisor must be >= 1, got {min_size_divisor}")
        if pyramid_levels < 0:
            raise ValueError(f"pyramid_levels must be >= 0, got {pyramid_levels}")
        if scale_factor <= 1.0:
            raise ValueError(f"scale_factor must be > 1, got {scale_factor}")

        if cascade_path is None:
            cascade_path = os.path.join(cv2.data.haarcascades, config.HAAR_CASCADE_FILE)
        if not os.path.exists(cascade_path):
            raise FileNotFoundError(f"Cascade file not found: {cascade_path}")

        self._classifier = cv2.CascadeClassifier(cascade_path)
        if self._classifier.empty():
            raise RuntimeError(f"Cannot load cascade: {cascade_path}")

        self.scale_factor = scale_factor
        self.min_neighbors = min_neighbors
        self.min_size_divisor = min_size_divisor
        self.pyramid_levels = pyramid_levels

        logger.info(
            f"HaarFaceDetector initialised: cascade={os.path.basename(cascade_path)}, "
            f"pyramid_levels={pyramid_levels}, min_size_divisor={min_size_divisor}"
        )

    def detect(self, frame: np.ndarray) -> List[Rect]:
        """
        Detect all faces in a BGR frame.

        Returns:
            List of Rect in full-resolution pixel coordinates.
        """
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        for _ in range(self.pyramid_levels):
            gray = cv2.pyrDown(gray)
        gray = cv2.equalizeHist(gray)

        # Size limits are relative to the (downscaled) detection image
        min_side = max(1, gray.shape[1] // self.min_size_divisor)
        max_side = min_side * 10

        boxes = self._classifier.detectMultiScale(
            gray,
            scaleFactor=self.scale_factor,
            minNeighbors=self.min_neighbors,
            minSize=(min_side, min_side),
            maxSize=(max_side, max_side),
        )

        scale = float(2 ** self.pyramid_levels)
        return [Rect.from_xywh(x, y, w, h).scaled(scale) for (x, y, w, h) in boxes]

    def close(self):
        """Nothing to release; present for interface parity."""

    def __enter__(self):
        return self

    def __exit__(self, *_):
        self.close()


# ═════════════════════════════════════════════════════════════
# 2. MEDIAPIPE
# ═════════════════════════════════════════════════════════════

class MediaPipeFaceDetector:
    """
    Thin wrapper around MediaPipe FaceDetection.

    Usage:
        detector = MediaPipeFaceDetector()
        faces = detector.detect(frame)      # → List[Rect]
        detector.close()                    # release resources
    """

    def __init__(
        self,
        min_confidence: float = config.FACE_DETECTION_CONFIDENCE,
        model_selection: int = config.FACE_DETECTION_MODEL,
    ):
        """
        Args:
            min_confidence:  Minimum detection confidence (0–1).
            model_selection: 0 = short-range (<2 m), 1 = full-range (<5 m).
        """
        # Optional dependency, only needed for this backend
        import mediapipe as mp

        self._mp_face = mp.solutions.face_detection

        # ── Create the detector (expensive, do this ONCE) ───
        self._detector = self._mp_face.FaceDetection(
            min_detection_confidence=min_confidence,
            model_selection=model_selection,
        )
        logger.info(
            f"MediaPipeFaceDetector initialised: "
            f"confidence={min_confidence}, model={model_selection}"
        )

    def detect(self, frame: np.ndarray) -> List[Rect]:
        """
        Detect all faces in a BGR frame.

        Returns:
            List of Rect in absolute pixel coordinates, clamped to the
            frame.
        """
        h, w = frame.shape[:2]

        # MediaPipe expects RGB input
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        results = self._detector.process(rgb)

        if not results.detections:
            return []

        faces: List[Rect] = []
        for detection in results.detections:
            # MediaPipe returns xmin, ymin, width, height normalised 0-1
            bbox = detection.location_data.relative_bounding_box

            abs_x = max(0, int(bbox.xmin * w))
            abs_y = max(0, int(bbox.ymin * h))
            abs_w = min(int(bbox.width * w), w - abs_x)
            abs_h = min(int(bbox.height * h), h - abs_y)
            if abs_w <= 0 or abs_h <= 0:
                continue

            faces.append(Rect.from_xywh(abs_x, abs_y, abs_w, abs_h))

        return faces

    def close(self):
        """Release MediaPipe resources."""
        self._detector.close()

    def __enter__(self):
        return self

    def __exit__(self, *_):
        self.close()


def build_detector(backend: str = config.DETECTOR_BACKEND, **kwargs):
    """
    Create the detector named by `backend` ("haar" or "mediapipe").

    Raises:
        ValueError: Unknown backend.
    """
    if backend == "haar":
        return HaarFaceDetector(**kwargs)
    if backend == "mediapipe":
        return MediaPipeFaceDetector(**kwargs)
    raise ValueError(f"Unknown detector backend: {backend!r}")
