"""
main.py — Command-Line Entry Point
===================================

Two modes:

  camtrack file talk.mp4 framed.mp4 [--debug-video debug.mp4]
      Reframe a recorded video.

  camtrack live [--camera 2] [--device /dev/video0]
      Camera → virtual webcam until Ctrl-C.

Every framing knob defaults to camtrack/config.py (which in turn reads
CAMTRACK_* environment variables) and can be overridden per run:

  camtrack live --zoom 4 --vertical-bias 0.3 --low-pass 0.05
"""

import argparse
import logging
import sys
from typing import List, Optional

from camtrack import __version__, config
from camtrack.services.face_tracker import build_detector
from camtrack.services.framing_controller import FramingParams
from camtrack.services.framing_engine import FramingEngine

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="camtrack",
        description="Smooth auto-framing for face-tracking video",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="Logging level (default: %(default)s)")

    # ── Framing knobs ────────────────────────────────────────
    framing = parser.add_argument_group("framing")
    framing.add_argument("--low-pass", type=float, default=config.LOW_PASS_COEFFICIENT,
                         help="Low-pass weight of each new target, (0, 1] (default: %(default)s)")
    framing.add_argument("--max-velocity", type=float, default=config.MAX_VELOCITY,
                         help="Max crop-centre speed, px/frame (default: %(default)s)")
    framing.add_argument("--max-acceleration", type=float, default=config.MAX_ACCELERATION,
                         help="Max crop-centre acceleration, px/frame² (default: %(default)s)")
    framing.add_argument("--size-max-velocity", type=float, default=config.SIZE_MAX_VELOCITY,
                         help="Max change of tracked area, px²/frame (default: %(default)s)")
    framing.add_argument("--size-max-acceleration", type=float, default=config.SIZE_MAX_ACCELERATION,
                         help="Max area acceleration, px²/frame² (default: %(default)s)")
    framing.add_argument("--zoom", type=float, default=config.ZOOM_FACTOR,
                         help="Crop area as a multiple of the face area (default: %(default)s)")
    framing.add_argument("--vertical-bias", type=float, default=config.VERTICAL_BIAS,
                         help="Fraction of the crop above the face centre, [0, 1] (default: %(default).3f)")

    # ── Detection ────────────────────────────────────────────
    detection = parser.add_argument_group("detection")
    detection.add_argument("--detector", choices=["haar", "mediapipe"], default=config.DETECTOR_BACKEND,
                           help="Face detector backend (default: %(default)s)")
    detection.add_argument("--pyramid-levels", type=int, default=config.DETECTION_PYRAMID_LEVELS,
                           help="Halve the frame this many times before Haar detection")
    detection.add_argument("--min-size-divisor", type=int, default=config.MIN_SIZE_DIVISOR,
                           help="Smallest Haar face = frame width / divisor")

    # ── Output ───────────────────────────────────────────────
    parser.add_argument("--output-size", default=f"{config.OUTPUT_WIDTH}x{config.OUTPUT_HEIGHT}",
                        help="Output WIDTHxHEIGHT (default: %(default)s)")

    sub = parser.add_subparsers(dest="command", required=True)

    file_cmd = sub.add_parser("file", help="Reframe a video file")
    file_cmd.add_argument("input", help="Source video")
    file_cmd.add_argument("output", help="Framed video to write")
    file_cmd.add_argument("--debug-video", default=None,
                          help="Also write a quarter-size video with detections, ROI and crop drawn")

    live_cmd = sub.add_parser("live", help="Camera to v4l2loopback device")
    live_cmd.add_argument("--camera", type=int, default=config.CAPTURE_DEVICE_INDEX,
                          help="OpenCV camera index (default: %(default)s)")
    live_cmd.add_argument("--device", default=config.LOOPBACK_DEVICE,
                          help="Loopback device (default: %(default)s)")
    live_cmd.add_argument("--capture-size", default=f"{config.CAPTURE_WIDTH}x{config.CAPTURE_HEIGHT}",
                          help="Requested camera WIDTHxHEIGHT (default: %(default)s)")

    return parser


def parse_size(text: str):
    """'640x480' → (640, 480)."""
    try:
        width, height = (int(part) for part in text.lower().split("x"))
    except ValueError:
        raise ValueError(f"Expected WIDTHxHEIGHT, got {text!r}") from None
    if width <= 0 or height <= 0:
        raise ValueError(f"Size must be positive, got {text!r}")
    return width, height


def params_from_args(args: argparse.Namespace) -> FramingParams:
    return FramingParams(
        low_pass_coefficient=args.low_pass,
        max_velocity=args.max_velocity,
        max_acceleration=args.max_acceleration,
        size_max_velocity=args.size_max_velocity,
        size_max_acceleration=args.size_max_acceleration,
        zoom_factor=args.zoom,
        vertical_bias=args.vertical_bias,
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    try:
        params = params_from_args(args)
        output_width, output_height = parse_size(args.output_size)
        if output_width % 2 or output_height % 2:
            raise ValueError(f"Output size must be even for YUV 4:2:0, got {args.output_size}")
        if args.command == "live":
            capture_width, capture_height = parse_size(args.capture_size)
    except ValueError as exc:
        parser.error(str(exc))

    logger.info(f"camtrack {__version__}: mode={args.command}, detector={args.detector}")

    if args.detector == "haar":
        detector = build_detector(
            "haar",
            pyramid_levels=args.pyramid_levels,
            min_size_divisor=args.min_size_divisor,
        )
    else:
        detector = build_detector(args.detector)

    with FramingEngine(detector, params, output_width, output_height) as engine:
        if args.command == "file":
            engine.process_file(args.input, args.output, debug_path=args.debug_video)
        else:
            engine.run_live(
                args.camera,
                args.device,
                capture_width=capture_width,
                capture_height=capture_height,
            )
    return 0


if __name__ == "__main__":
    sys.exit(main())
