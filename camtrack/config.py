"""
config.py — Central Configuration for camtrack
===============================================

All tuneable constants live here so they can be adjusted without
touching the framing logic.  Values are grouped by subsystem.

The framing knobs can be overridden from the environment
(CAMTRACK_LOW_PASS, CAMTRACK_MAX_VELOCITY, ...) so a running setup can
be retuned without editing code.  Command-line flags in main.py take
precedence over both.
"""

import os


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


# ─────────────────────────────────────────────────────────────
# 1. OUTPUT / ASPECT RATIO
# ─────────────────────────────────────────────────────────────

# Size of the frames handed to the output sink
OUTPUT_WIDTH = 640
OUTPUT_HEIGHT = 480

# Output aspect ratio (width / height): 4:3
OUTPUT_ASPECT = OUTPUT_WIDTH / OUTPUT_HEIGHT


# ─────────────────────────────────────────────────────────────
# 2. CAPTURE
# ─────────────────────────────────────────────────────────────

# OpenCV camera index used by `camtrack live`
CAPTURE_DEVICE_INDEX = _env_int("CAMTRACK_CAPTURE_DEVICE", 0)

# Requested capture size.  At 1440×1080 and below detection keeps up
# with the camera; 1920×1080 costs roughly a quarter of the frame rate.
CAPTURE_WIDTH = 1440
CAPTURE_HEIGHT = 1080

# MJPG lets most USB webcams deliver the high resolutions at full rate
CAPTURE_FOURCC = "MJPG"


# ─────────────────────────────────────────────────────────────
# 3. FACE DETECTION
# ─────────────────────────────────────────────────────────────

# "haar" (OpenCV cascade, no extra deps) or "mediapipe"
DETECTOR_BACKEND = os.getenv("CAMTRACK_DETECTOR", "haar")

# Cascade classifier parameters (OpenCV defaults)
HAAR_CASCADE_FILE = "haarcascade_frontalface_default.xml"
HAAR_SCALE_FACTOR = 1.1
HAAR_MIN_NEIGHBORS = 3

# Smallest face accepted = (detection frame width) / MIN_SIZE_DIVISOR.
# The largest is ten times that.
MIN_SIZE_DIVISOR = 10

# Halve the frame this many times before detection.  Each level makes
# detection ~4× cheaper at the cost of missing small faces.
DETECTION_PYRAMID_LEVELS = 0

# MediaPipe backend: minimum confidence score (0-1) and model
#   0 = short-range (within 2 m), faster, good for a desk webcam
#   1 = full-range  (within 5 m)
FACE_DETECTION_CONFIDENCE = 0.5
FACE_DETECTION_MODEL = 0


# ─────────────────────────────────────────────────────────────
# 4. FRAMING  (smoothing + zoom)
# ─────────────────────────────────────────────────────────────

# Low-pass weight given to each new target (0-1].
# Lower = smoother but laggier, 1 = no smoothing.
LOW_PASS_COEFFICIENT = _env_float("CAMTRACK_LOW_PASS", 0.01)

# Bounded-acceleration stage for the crop centre (pixels per frame,
# pixels per frame²)
MAX_VELOCITY = _env_float("CAMTRACK_MAX_VELOCITY", 1.0)
MAX_ACCELERATION = _env_float("CAMTRACK_MAX_ACCELERATION", 0.075)

# Same for the tracked area (pixels² per frame, pixels² per frame²).
# Area lives on a much larger scale than position, hence its own caps.
SIZE_MAX_VELOCITY = _env_float("CAMTRACK_SIZE_MAX_VELOCITY", 100_000.0)
SIZE_MAX_ACCELERATION = _env_float("CAMTRACK_SIZE_MAX_ACCELERATION", 10_000.0)

# Crop area as a multiple of the tracked face area.
# < 1 crops tighter than the face, > 1 shows more of the scene.
ZOOM_FACTOR = _env_float("CAMTRACK_ZOOM", 6.0)

# Fraction of the crop height above the tracked centre.
# 0.5 = centred; 1/3 puts the eyes near the upper third.
VERTICAL_BIAS = _env_float("CAMTRACK_VERTICAL_BIAS", 40 / 120)


# ─────────────────────────────────────────────────────────────
# 5. OUTPUT SINKS  (FFmpeg / v4l2loopback)
# ─────────────────────────────────────────────────────────────

# Codec for file output (libx264 is universally compatible)
FFMPEG_VCODEC = "libx264"

# Constant Rate Factor: lower = better quality, bigger file
FFMPEG_CRF = "20"

# Encoding preset: slower = better compression
FFMPEG_PRESET = "fast"

# Pixel format (yuv420p ensures broad compatibility)
FFMPEG_PIX_FMT = "yuv420p"

# Virtual camera device for `camtrack live`.  The device must already
# be configured for OUTPUT_WIDTH×OUTPUT_HEIGHT YUV420, e.g.
#   modprobe v4l2loopback exclusive_caps=1
LOOPBACK_DEVICE = os.getenv("CAMTRACK_LOOPBACK_DEVICE", "/dev/video0")


# ─────────────────────────────────────────────────────────────
# 6. LOGGING
# ─────────────────────────────────────────────────────────────

LOG_LEVEL = os.getenv("CAMTRACK_LOG_LEVEL", "INFO")

# How often the engine logs FPS and the current ROI (seconds)
STATS_INTERVAL_S = 1.0
