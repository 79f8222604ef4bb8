"""
video_io.py — OpenCV & FFmpeg Video I/O Utilities
==================================================

Everything that touches pixels lives here, so the framing logic can
stay pure maths:

  • VideoFrameReader      — OpenCV capture over a file or a camera.
  • warp_crop()           — cut a crop window out of a frame and
                            resample it to the output size.
  • annotate()            — draw detections / ROI / crop for debugging.
  • StreamingVideoWriter  — pipe frames to FFmpeg, one at a time.
  • LoopbackDeviceWriter  — push I420 frames to a v4l2loopback
                            virtual webcam.

Design philosophy:
  • Use FFmpeg (subprocess) for encoding; it is much faster than
    cv2.VideoWriter and gives control over CRF / preset.
  • Use OpenCV for capture and in-memory pixel work.
  • All FFmpeg commands are built as lists (not shell strings).

Dependencies:
  • FFmpeg on PATH (file output only)
  • pip install opencv-python-headless numpy
"""

import logging
import os
import subprocess
from typing import Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from camtrack.config import (
    FFMPEG_CRF,
    FFMPEG_PIX_FMT,
    FFMPEG_PRESET,
    FFMPEG_VCODEC,
)
from camtrack.services.geometry import Rect

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════
# 1. FRAME READING  (OpenCV)
# ═════════════════════════════════════════════════════════════

class VideoFrameReader:
    """
    Generator-based frame reader using OpenCV.

    `source` is either a video file path or a camera index.  Frames
    are yielded one at a time so memory stays constant.

    Usage:
        with VideoFrameReader("clip.mp4") as reader:
            for idx, frame in reader:
                # frame is a BGR numpy array (H×W×3)
                process(frame)
    """

    def __init__(
        self,
        source: Union[str, int],
        width: Optional[int] = None,
        height: Optional[int] = None,
        fourcc: Optional[str] = None,
    ):
        """
        Args:
            source: File path or camera index.
            width:  Requested capture width (cameras only; the device
                    may pick something else, read `.width` afterwards).
            height: Requested capture height.
            fourcc: Requested pixel format, e.g. "MJPG".

        Raises:
            FileNotFoundError: File path does not exist.
            RuntimeError:      Capture could not be opened.
        """
        if isinstance(source, str):
            if not os.path.exists(source):
                raise FileNotFoundError(f"Video not found: {source}")
            self.cap = cv2.VideoCapture(source)
        else:
            self.cap = cv2.VideoCapture(int(source))
            # Order matters: some drivers only honour the size after
            # the format has been switched.
            if fourcc:
                self.cap.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*fourcc))
            if width:
                self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            if height:
                self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        if not self.cap.isOpened():
            raise RuntimeError(f"Cannot open video source: {source}")

        self.source = source
        self.fps = self.cap.get(cv2.CAP_PROP_FPS)
        self.width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self.total_frames = int(self.cap.get(cv2.CAP_PROP_FRAME_COUNT))

        logger.info(
            f"Opened {source!r} ({self.cap.getBackendName()}): "
            f"{self.width}×{self.height} @ {self.fps:.2f} fps"
        )

    def __iter__(self):
        """Yield (frame_index, frame_bgr) tuples."""
        idx = 0
        while True:
            ret, frame = self.cap.read()
            if not ret:
                break
            yield idx, frame
            idx += 1

    def release(self):
        """Release the OpenCV capture object."""
        if self.cap.isOpened():
            self.cap.release()

    def __enter__(self):
        return self

    def __exit__(self, *_):
        self.release()


# ═════════════════════════════════════════════════════════════
# 2. CROP RENDERING
# ═════════════════════════════════════════════════════════════

def warp_crop(
    frame: np.ndarray,
    crop: Rect,
    output_width: int,
    output_height: int,
) -> np.ndarray:
    """
    Resample the crop window of `frame` to output_width×output_height.

    An affine warp (rather than slicing + resize) keeps sub-pixel crop
    positions, so slow pans glide instead of stepping a pixel at a time.

    Args:
        frame:         Source BGR image (H × W × 3).
        crop:          Crop window in frame pixels.
        output_width:  Width of the returned image.
        output_height: Height of the returned image.

    Returns:
        BGR image (output_height × output_width × 3).
    """
    src = np.float32([
        [crop.x, crop.y],
        [crop.x, crop.bottom],
        [crop.right, crop.bottom],
    ])
    dst = np.float32([
        [0, 0],
        [0, output_height],
        [output_width, output_height],
    ])
    transform = cv2.getAffineTransform(src, dst)
    return cv2.warpAffine(
        frame,
        transform,
        (output_width, output_height),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
    )


# Debug colours (BGR)
_DETECTION_COLOUR = (0, 255, 0)
_ROI_COLOUR = (255, 0, 0)
_CROP_COLOUR = (38, 38, 238)


def annotated_size(width: int, height: int, scale: float = 0.25) -> Tuple[int, int]:
    """Size of the image annotate() returns, rounded down to even numbers."""
    w = max(2, int(width * scale)) // 2 * 2
    h = max(2, int(height * scale)) // 2 * 2
    return w, h


def annotate(
    frame: np.ndarray,
    detections: Sequence[Rect],
    roi: Optional[Rect],
    crop: Optional[Rect],
    scale: float = 0.25,
) -> np.ndarray:
    """
    Return a downscaled copy of `frame` with the raw detections
    (green), smoothed ROI (blue) and crop window (red) drawn on it.
    """
    h, w = frame.shape[:2]
    small = cv2.resize(frame, annotated_size(w, h, scale), interpolation=cv2.INTER_NEAREST)

    def draw(rect: Rect, colour):
        rx, ry, rw, rh = rect.scaled(scale).as_int_tuple()
        cv2.rectangle(small, (rx, ry), (rx + rw, ry + rh), colour, 1)

    for face in detections:
        draw(face, _DETECTION_COLOUR)
    if roi is not None:
        draw(roi, _ROI_COLOUR)
    if crop is not None:
        draw(crop, _CROP_COLOUR)
    return small


# ═════════════════════════════════════════════════════════════
# 3. STREAMING RENDER  (FFmpeg pipe)
# ═════════════════════════════════════════════════════════════

class StreamingVideoWriter:
    """
    Encode framed output to a video file through an FFmpeg pipe.

    Frames arrive already cropped and warped to the output size, one
    per tick, so nothing is buffered here: each write() goes straight
    to FFmpeg's stdin.  The output has no audio track; the camera
    stream carries none.

    Usage:
        with StreamingVideoWriter("framed.mp4", fps=30, width=640, height=480) as writer:
            for frame in framed_frames:
                writer.write(frame)
    """

    def __init__(
        self,
        output_path: str,
        fps: float,
        width: int,
        height: int,
    ):
        """
        Args:
            output_path: Encoded file to create (overwritten if present).
            fps:         Frame rate stamped on the output.
            width:       Frame width; must be even for yuv420p.
            height:      Frame height; must be even for yuv420p.

        Raises:
            ValueError:   Non-positive fps or odd / non-positive size.
            RuntimeError: FFmpeg could not be started.
        """
        if not fps > 0:
            raise ValueError(f"fps must be > 0, got {fps}")
        if width <= 0 or height <= 0 or width % 2 or height % 2:
            raise ValueError(
                f"{FFMPEG_PIX_FMT} output needs a positive, even size, got {width}×{height}"
            )

        self.output_path = output_path
        self.fps = fps
        self.width = width
        self.height = height
        self._frame_count = 0
        self._closed = False

        cmd = [
            "ffmpeg", "-y", "-loglevel", "error",
            "-f", "rawvideo",
            "-pix_fmt", "bgr24",                  # OpenCV uses BGR
            "-s", f"{width}x{height}",
            "-r", f"{fps:.3f}",
            "-i", "pipe:0",
            "-an",
            "-c:v", FFMPEG_VCODEC,
            "-crf", FFMPEG_CRF,
            "-preset", FFMPEG_PRESET,
            "-pix_fmt", FFMPEG_PIX_FMT,
            "-movflags", "+faststart",
            output_path,
        ]

        try:
            self._process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise RuntimeError("ffmpeg not found on PATH") from exc

        logger.info(f"Encoding {width}×{height} @ {fps:.2f} fps → {output_path}")

    @property
    def frame_count(self) -> int:
        return self._frame_count

    def write(self, frame: np.ndarray):
        """Send one BGR frame of exactly width×height."""
        if self._closed:
            raise RuntimeError(f"Writer for {self.output_path} is already closed")
        if frame.shape[:2] != (self.height, self.width):
            raise ValueError(
                f"Frame is {frame.shape[1]}×{frame.shape[0]}, "
                f"writer expects {self.width}×{self.height}"
            )
        try:
            self._process.stdin.write(np.ascontiguousarray(frame).tobytes())
        except BrokenPipeError:
            stderr = self._process.stderr.read().decode(errors="replace")
            raise RuntimeError(f"FFmpeg exited after {self._frame_count} frames:\n{stderr}")
        self._frame_count += 1

    def close(self) -> str:
        """
        Finish the file and wait for FFmpeg.  Safe to call twice.

        Raises:
            RuntimeError: FFmpeg reported a failure.
        """
        if self._closed:
            return self.output_path
        self._closed = True

        _, stderr = self._process.communicate()
        if self._process.returncode != 0:
            raise RuntimeError(f"FFmpeg encoding failed:\n{stderr.decode(errors='replace')}")

        logger.info(f"✓ Wrote {self._frame_count} frames → {self.output_path}")
        return self.output_path

    def abort(self):
        """Stop FFmpeg without finalising; the partial file is left as is."""
        if self._closed:
            return
        self._closed = True
        self._process.kill()
        self._process.communicate()
        logger.warning(f"Encoding aborted after {self._frame_count} frames: {self.output_path}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, *_):
        if exc_type is None:
            self.close()
        else:
            self.abort()


# ═════════════════════════════════════════════════════════════
# 4. VIRTUAL WEBCAM  (v4l2loopback)
# ═════════════════════════════════════════════════════════════

class LoopbackDeviceWriter:
    """
    Write frames to a v4l2loopback device as planar YUV 4:2:0 (I420).

    Browsers and most video-call apps accept I420 from a loopback
    device; RGB24 is not universally supported.  The device must
    already be set to width×height YUV420; this class only writes.
    """

    def __init__(self, device: str, width: int, height: int):
        if width % 2 or height % 2:
            raise ValueError(f"I420 needs even dimensions, got {width}×{height}")
        if not os.path.exists(device):
            raise FileNotFoundError(f"Loopback device not found: {device}")

        self.device = device
        self.width = width
        self.height = height
        self._frame_bytes = width * height * 3 // 2
        self._fd = os.open(device, os.O_RDWR)
        self._frame_count = 0
        logger.info(f"Writing {width}×{height} I420 to {device}")

    @property
    def frame_count(self) -> int:
        return self._frame_count

    def write(self, frame: np.ndarray):
        if frame.shape[:2] != (self.height, self.width):
            raise ValueError(
                f"Frame is {frame.shape[1]}×{frame.shape[0]}, "
                f"device expects {self.width}×{self.height}"
            )
        i420 = cv2.cvtColor(frame, cv2.COLOR_BGR2YUV_I420)
        try:
            written = os.write(self._fd, i420.tobytes())
        except OSError as exc:
            raise RuntimeError(f"Writing frame to {self.device} failed: {exc}") from exc
        if written != self._frame_bytes:
            logger.warning(f"Short write to {self.device}: {written}/{self._frame_bytes} bytes")
        self._frame_count += 1

    def close(self):
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None

    def __enter__(self):
        return self

    def __exit__(self, *_):
        self.close()
