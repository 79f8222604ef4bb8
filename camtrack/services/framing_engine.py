"""
framing_engine.py — Capture → Detect → Frame → Output Loop
===========================================================

Ties the pipeline together: reads frames, finds faces, feeds the
framing controller, and writes the warped crop to a sink.

Pipeline (one tick per frame):
  ┌────────────┐    ┌──────────────┐    ┌──────────────────┐
  │ Read frame │───▶│ Face detect  │───▶│ FramingController│
  │ (OpenCV)   │    │ (0..n rects) │    │ tick + crop      │
  └────────────┘    └──────────────┘    └──────────────────┘
                                                  │
  ┌────────────┐    ┌──────────────┐              │
  │ Sink       │◀───│ warp_crop()  │◀─────────────┘
  │ file / dev │    │ (affine)     │
  └────────────┘    └──────────────┘

A tick with no faces is normal: the controller coasts toward the last
face it saw.  A tick where no valid crop exists re-sends the previous
output frame.

Usage:
    with FramingEngine(build_detector()) as engine:
        engine.process_file("talk.mp4", "framed.mp4")
"""

import logging
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import numpy as np

from camtrack.config import (
    CAPTURE_FOURCC,
    CAPTURE_HEIGHT,
    CAPTURE_WIDTH,
    OUTPUT_HEIGHT,
    OUTPUT_WIDTH,
    STATS_INTERVAL_S,
)
from camtrack.services.framing_controller import FramingController, FramingParams
from camtrack.services.geometry import Rect
from camtrack.utils.video_io import (
    LoopbackDeviceWriter,
    StreamingVideoWriter,
    VideoFrameReader,
    annotate,
    annotated_size,
    warp_crop,
)

logger = logging.getLogger(__name__)


@dataclass
class FrameResult:
    """Outcome of a single tick."""
    output: np.ndarray
    detections: List[Rect]
    crop: Optional[Rect]        # None → previous output was reused


@dataclass
class RunStats:
    frames: int = 0
    frames_with_faces: int = 0
    held_frames: int = 0


class FramingEngine:
    """
    Per-frame orchestrator.

    The engine owns the detector; a fresh FramingController is built
    for every stream, seeded with that stream's full frame.
    """

    def __init__(
        self,
        detector,
        params: Optional[FramingParams] = None,
        output_width: int = OUTPUT_WIDTH,
        output_height: int = OUTPUT_HEIGHT,
        stats_interval_s: float = STATS_INTERVAL_S,
    ):
        """
        Args:
            detector:         Anything with detect(frame) -> List[Rect].
            params:           Framing knobs; defaults to config.
            output_width:     Width of the frames sent to the sink.
            output_height:    Height of the frames sent to the sink.
            stats_interval_s: Seconds between FPS / ROI log lines.
        """
        if output_width <= 0 or output_height <= 0:
            raise ValueError(f"Output size must be positive, got {output_width}×{output_height}")

        self._detector = detector
        self.params = params if params is not None else FramingParams.from_config()
        self.output_width = output_width
        self.output_height = output_height
        self.stats_interval_s = stats_interval_s
        self.controller: Optional[FramingController] = None
        self.stats = RunStats()

        logger.info(
            f"FramingEngine initialised: output={output_width}×{output_height}, "
            f"params={self.params}"
        )

    @property
    def output_aspect(self) -> float:
        return self.output_width / self.output_height

    def reconfigure(self, params: FramingParams) -> None:
        """Apply new knobs, including to the stream in progress."""
        self.params = params
        if self.controller is not None:
            self.controller.reconfigure(params)

    # ═════════════════════════════════════════════════════════
    # PER-FRAME STEP
    # ═════════════════════════════════════════════════════════

    def start_stream(self, frame_width: int, frame_height: int) -> FramingController:
        """Reset framing for a new width×height stream."""
        self.controller = FramingController.for_scene(
            frame_width, frame_height, aspect=self.output_aspect, params=self.params
        )
        return self.controller

    def process_frame(
        self,
        frame: np.ndarray,
        previous_output: Optional[np.ndarray] = None,
    ) -> FrameResult:
        """
        Run one tick on `frame`.

        Args:
            frame:           BGR source frame.
            previous_output: Last frame sent to the sink, reused when
                             no valid crop exists.

        Returns:
            FrameResult with the output image to send.
        """
        if self.controller is None:
            h, w = frame.shape[:2]
            self.start_stream(w, h)
        controller = self.controller

        detections = list(self._detector.detect(frame))
        controller.tick(detections)
        crop = controller.current_crop()

        if crop is not None:
            output = warp_crop(frame, crop, self.output_width, self.output_height)
        elif previous_output is not None:
            logger.debug("No valid crop this tick; holding previous frame")
            output = previous_output
        else:
            logger.debug("No valid crop and no previous frame; sending full scene")
            output = warp_crop(frame, controller.bounds, self.output_width, self.output_height)

        return FrameResult(output=output, detections=detections, crop=crop)

    # ═════════════════════════════════════════════════════════
    # LOOPS
    # ═════════════════════════════════════════════════════════

    def run(
        self,
        frames: Iterable[Tuple[int, np.ndarray]],
        sink,
        debug_sink=None,
    ) -> RunStats:
        """
        Frame every (index, frame) pair and write the result to `sink`.

        Args:
            frames:     Iterable of (frame_index, BGR frame).
            sink:       Anything with write(frame).
            debug_sink: Optional sink for annotated quarter-size frames.

        Returns:
            RunStats for the stream.  `self.stats` holds the same object
            and is current after every frame, so an interrupted run can
            still report it.
        """
        self.controller = None
        self.stats = stats = RunStats()
        previous: Optional[np.ndarray] = None

        interval_frames = 0
        interval_start = time.time()

        for _, frame in frames:
            result = self.process_frame(frame, previous)
            sink.write(result.output)
            previous = result.output

            stats.frames += 1
            if result.detections:
                stats.frames_with_faces += 1
            if result.crop is None:
                stats.held_frames += 1

            if debug_sink is not None:
                debug_sink.write(
                    annotate(frame, result.detections, self.controller.roi, result.crop)
                )

            # ── Periodic FPS / ROI logging ───────────────────
            interval_frames += 1
            now = time.time()
            elapsed = now - interval_start
            if elapsed > 0 and elapsed >= self.stats_interval_s:
                logger.info(
                    f"FPS: {interval_frames / elapsed:.1f}  ROI: {self.controller.roi}"
                )
                interval_frames = 0
                interval_start = now

        logger.info(
            f"Stream finished: {stats.frames} frames, "
            f"{stats.frames_with_faces} with faces, {stats.held_frames} held"
        )
        return stats

    def process_file(
        self,
        video_path: str,
        output_path: str,
        debug_path: Optional[str] = None,
    ) -> str:
        """
        Reframe a video file.

        Args:
            video_path:  Source video.
            output_path: Where to write the framed video.
            debug_path:  Optional annotated quarter-size video.

        Returns:
            output_path.

        Raises:
            FileNotFoundError: If video_path doesn't exist.
            RuntimeError:      If FFmpeg fails.
        """
        t0 = time.time()
        logger.info(f"Processing: {video_path} → {output_path}")

        with VideoFrameReader(video_path) as reader:
            fps = reader.fps if reader.fps > 0 else 30.0
            with StreamingVideoWriter(
                output_path, fps, self.output_width, self.output_height
            ) as writer:
                if debug_path is None:
                    self.run(reader, writer)
                else:
                    with StreamingVideoWriter(
                        debug_path, fps, *annotated_size(reader.width, reader.height)
                    ) as debug_writer:
                        self.run(reader, writer, debug_writer)

        logger.info(f"✓ Done in {time.time() - t0:.1f}s → {output_path}")
        return output_path

    def run_live(
        self,
        camera_index: int,
        device: str,
        capture_width: int = CAPTURE_WIDTH,
        capture_height: int = CAPTURE_HEIGHT,
        fourcc: str = CAPTURE_FOURCC,
    ) -> RunStats:
        """
        Camera → loopback device until Ctrl-C or the camera stops.
        """
        with VideoFrameReader(
            camera_index, width=capture_width, height=capture_height, fourcc=fourcc
        ) as reader:
            with LoopbackDeviceWriter(device, self.output_width, self.output_height) as sink:
                try:
                    return self.run(reader, sink)
                except KeyboardInterrupt:
                    stats = self.stats
                    logger.info(
                        f"Interrupted after {stats.frames} frames "
                        f"({stats.frames_with_faces} with faces, {stats.held_frames} held)"
                    )
                    return stats

    def close(self):
        """Release the detector."""
        self._detector.close()

    def __enter__(self):
        return self

    def __exit__(self, *_):
        self.close()
