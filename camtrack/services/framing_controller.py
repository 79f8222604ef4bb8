"""
framing_controller.py — Smooth Moving Crop Window
==================================================

Turns a stream of noisy, intermittent face boxes into a crop window
that glides around the scene at a fixed output aspect ratio.

The controller tracks three independent quantities of the region of
interest (ROI), each through its own smoothing pipeline:

    centre-x ──▶ BoundedAccel ──▶ LowPass
    centre-y ──▶ BoundedAccel ──▶ LowPass
    area     ──▶ BoundedAccel ──▶ LowPass

Tracking area rather than width/height means a face that turns
sideways (narrower box, same distance) barely changes the zoom.

Per tick:
  ┌───────────────┐    ┌──────────────┐    ┌──────────────────┐
  │ detections    │───▶│ observe()    │───▶│ current_crop()   │───▶ renderer
  │ (0..n rects)  │    │ (or coast()) │    │ zoom + bias + fit│
  └───────────────┘    └──────────────┘    └──────────────────┘

current_crop() is a pure function of the smoothed state.  When the
crop cannot be fitted inside the scene (e.g. the tracked centre has
left the scene) it returns None; callers should hold the previous
output frame.
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import Optional, Sequence

from camtrack import config
from camtrack.services.geometry import Rect, bounding_rect
from camtrack.services.smoothing import ComposedSmoother, SmootherKind, make_smoother

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════
# 1. PARAMETERS
# ═════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FramingParams:
    """
    Tuning knobs for a FramingController.

    Attributes:
        low_pass_coefficient:  α of the low-pass stage, in (0, 1].
        max_velocity:          Centre speed cap (pixels / tick).
        max_acceleration:      Centre acceleration cap (pixels / tick²).
        size_max_velocity:     Area speed cap (pixels² / tick).
        size_max_acceleration: Area acceleration cap (pixels² / tick²).
        zoom_factor:           Crop area as a multiple of the ROI area.
        vertical_bias:         Fraction of the crop height above the
                               ROI centre, in [0, 1].
    """
    low_pass_coefficient: float = config.LOW_PASS_COEFFICIENT
    max_velocity: float = config.MAX_VELOCITY
    max_acceleration: float = config.MAX_ACCELERATION
    size_max_velocity: float = config.SIZE_MAX_VELOCITY
    size_max_acceleration: float = config.SIZE_MAX_ACCELERATION
    zoom_factor: float = config.ZOOM_FACTOR
    vertical_bias: float = config.VERTICAL_BIAS

    def __post_init__(self):
        self.validate()

    @classmethod
    def from_config(cls) -> "FramingParams":
        """Read the current values from camtrack.config."""
        return cls(
            low_pass_coefficient=config.LOW_PASS_COEFFICIENT,
            max_velocity=config.MAX_VELOCITY,
            max_acceleration=config.MAX_ACCELERATION,
            size_max_velocity=config.SIZE_MAX_VELOCITY,
            size_max_acceleration=config.SIZE_MAX_ACCELERATION,
            zoom_factor=config.ZOOM_FACTOR,
            vertical_bias=config.VERTICAL_BIAS,
        )

    def validate(self) -> None:
        """
        Raises:
            ValueError: On any out-of-range value.  Nothing is clamped.
        """
        for name in (
            "low_pass_coefficient",
            "max_velocity",
            "max_acceleration",
            "size_max_velocity",
            "size_max_acceleration",
            "zoom_factor",
            "vertical_bias",
        ):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ValueError(f"{name} must be a finite number, got {value!r}")

        if not 0.0 < self.low_pass_coefficient <= 1.0:
            raise ValueError(
                f"low_pass_coefficient must be in (0, 1], got {self.low_pass_coefficient}"
            )
        for name in (
            "max_velocity",
            "max_acceleration",
            "size_max_velocity",
            "size_max_acceleration",
            "zoom_factor",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0, got {getattr(self, name)}")
        if not 0.0 <= self.vertical_bias <= 1.0:
            raise ValueError(f"vertical_bias must be in [0, 1], got {self.vertical_bias}")

    def with_changes(self, **changes) -> "FramingParams":
        """Copy with some fields replaced (validated again)."""
        return replace(self, **changes)


@dataclass(frozen=True)
class FramingState:
    """Snapshot of the smoothed state, for logging and tests."""
    centre_x: float
    centre_y: float
    size: float
    velocity_x: float
    velocity_y: float
    size_velocity: float


# ═════════════════════════════════════════════════════════════
# 2. CONTROLLER
# ═════════════════════════════════════════════════════════════

class FramingController:
    """
    Filter bank that follows a region of interest and derives an
    aspect-correct crop window inside fixed scene bounds.

    Usage:
        ctrl = FramingController.for_scene(1440, 1080, aspect=4 / 3)
        for faces in detections_per_frame:
            ctrl.tick(faces)
            crop = ctrl.current_crop()
            if crop is not None:
                render(crop)
    """

    def __init__(
        self,
        bounds: Rect,
        aspect: float,
        params: Optional[FramingParams] = None,
        seed: Optional[Rect] = None,
    ):
        """
        Args:
            bounds: Scene rectangle the crop must stay inside.
            aspect: Output width / height.  Fixed for the controller's
                    lifetime.
            params: Tuning knobs; defaults to FramingParams.from_config().
            seed:   Initial ROI.  Defaults to `bounds` (start zoomed out
                    on the whole scene).

        Raises:
            ValueError: Non-positive aspect or degenerate bounds.
        """
        aspect = float(aspect)
        if not math.isfinite(aspect) or aspect <= 0:
            raise ValueError(f"aspect must be a positive number, got {aspect}")
        if bounds.is_degenerate():
            raise ValueError(f"scene bounds must have positive size, got {bounds}")

        self._bounds = bounds
        self._aspect = aspect
        self._params = params if params is not None else FramingParams.from_config()

        seed = seed if seed is not None else bounds
        _check_rect(seed, "seed")
        cx, cy = seed.centre
        self._centre_x = self._centre_chain(cx)
        self._centre_y = self._centre_chain(cy)
        self._size = self._size_chain(seed.area)

        # Last observed ROI; coast() keeps steering toward it
        self._last_target: Optional[Rect] = None

    @classmethod
    def for_scene(
        cls,
        width: int,
        height: int,
        aspect: float = config.OUTPUT_ASPECT,
        params: Optional[FramingParams] = None,
    ) -> "FramingController":
        """Controller for a width×height frame, seeded with the full frame."""
        return cls(Rect.from_xywh(0, 0, width, height), aspect, params)

    # ── Chain construction ───────────────────────────────────

    def _chain(
        self, initial: float, max_velocity: float, max_acceleration: float, **extra
    ) -> ComposedSmoother:
        """BoundedAccel → LowPass pipeline built through make_smoother()."""
        return ComposedSmoother(
            make_smoother(
                SmootherKind.BOUNDED_ACCEL,
                initial,
                max_velocity=max_velocity,
                max_acceleration=max_acceleration,
                **extra,
            ),
            make_smoother(
                SmootherKind.LOW_PASS, initial, coefficient=self._params.low_pass_coefficient
            ),
        )

    def _centre_chain(self, initial: float) -> ComposedSmoother:
        p = self._params
        return self._chain(initial, p.max_velocity, p.max_acceleration)

    def _size_chain(self, initial: float) -> ComposedSmoother:
        # Area never goes negative, however hard the momentum pulls
        p = self._params
        return self._chain(initial, p.size_max_velocity, p.size_max_acceleration, lower=0.0)

    # ─────────────────────────────────────────────────────────
    # Read-only state
    # ─────────────────────────────────────────────────────────

    @property
    def bounds(self) -> Rect:
        return self._bounds

    @property
    def aspect(self) -> float:
        return self._aspect

    @property
    def params(self) -> FramingParams:
        return self._params

    @property
    def centre(self):
        """Smoothed (cx, cy) of the ROI."""
        return (self._centre_x.value, self._centre_y.value)

    @property
    def size(self) -> float:
        """Smoothed ROI area in pixels²."""
        return self._size.value

    @property
    def last_target(self) -> Optional[Rect]:
        return self._last_target

    def snapshot(self) -> FramingState:
        return FramingState(
            centre_x=self._centre_x.value,
            centre_y=self._centre_y.value,
            size=self._size.value,
            velocity_x=self._centre_x.stages[0].velocity,
            velocity_y=self._centre_y.stages[0].velocity,
            size_velocity=self._size.stages[0].velocity,
        )

    # ─────────────────────────────────────────────────────────
    # Updates
    # ─────────────────────────────────────────────────────────

    def observe(self, rect: Rect) -> None:
        """
        Feed this tick's ROI (usually the union of all detections).

        Raises:
            ValueError: Negative size or non-finite components.
        """
        _check_rect(rect, "observed rect")
        cx, cy = rect.centre
        self._centre_x.update(cx)
        self._centre_y.update(cy)
        self._size.update(rect.area)
        self._last_target = rect

    def coast(self) -> None:
        """
        Advance one tick without a detection.

        The chains keep moving toward the last observed ROI, so the
        bounded-acceleration stage settles onto it instead of freezing
        mid-slew.  Before the first observation there is nothing to
        steer toward and the state is left alone.
        """
        if self._last_target is None:
            return
        cx, cy = self._last_target.centre
        self._centre_x.update(cx)
        self._centre_y.update(cy)
        self._size.update(self._last_target.area)

    def tick(self, detections: Sequence[Rect]) -> bool:
        """
        observe() the union of `detections`, or coast() when empty.

        Returns:
            True if a detection was observed this tick.
        """
        if not detections:
            self.coast()
            return False
        self.observe(bounding_rect(detections))
        return True

    def reconfigure(self, params: FramingParams) -> None:
        """
        Swap in new tuning knobs.  Smoothed positions and velocities
        are kept, so retuning never makes the window jump.
        """
        params.validate()
        for chain, vmax, amax in (
            (self._centre_x, params.max_velocity, params.max_acceleration),
            (self._centre_y, params.max_velocity, params.max_acceleration),
            (self._size, params.size_max_velocity, params.size_max_acceleration),
        ):
            accel, low_pass = chain.stages
            accel.set_limits(vmax, amax)
            low_pass.coefficient = params.low_pass_coefficient
        self._params = params
        logger.debug(f"Framing reconfigured: {params}")

    # ─────────────────────────────────────────────────────────
    # Crop computation
    # ─────────────────────────────────────────────────────────

    def current_crop(
        self,
        zoom_factor: Optional[float] = None,
        vertical_bias: Optional[float] = None,
    ) -> Optional[Rect]:
        """
        Compute the crop window for the current smoothed state.

        Args:
            zoom_factor:   Crop area / ROI area.  Defaults to params.
            vertical_bias: Fraction of the crop height above the ROI
                           centre.  Defaults to params.

        Returns:
            Rect with width / height == aspect, fully inside bounds,
            or None when no valid crop exists this tick.
        """
        if zoom_factor is None:
            zoom_factor = self._params.zoom_factor
        if vertical_bias is None:
            vertical_bias = self._params.vertical_bias
        if not math.isfinite(zoom_factor) or zoom_factor <= 0:
            raise ValueError(f"zoom_factor must be a finite number > 0, got {zoom_factor}")
        if not 0.0 <= vertical_bias <= 1.0:
            raise ValueError(f"vertical_bias must be in [0, 1], got {vertical_bias}")

        aspect = self._aspect
        size = self._size.value * zoom_factor
        if size <= 0:
            return None
        height = math.sqrt(size / aspect)
        width = aspect * height
        x = self._centre_x.value - width / 2
        y = self._centre_y.value - height * vertical_bias

        return self._fit_to_bounds(x, y, width, height)

    @property
    def roi(self) -> Optional[Rect]:
        """The smoothed ROI itself: no zoom, centred vertically."""
        return self.current_crop(1.0, 0.5)

    def _fit_to_bounds(self, x: float, y: float, width: float, height: float) -> Optional[Rect]:
        """
        Shrink the rectangle into bounds while keeping the aspect
        ratio.  Each violated edge shrinks the rectangle from all four
        sides so its centre stays put; edges are checked in the order
        left, top, right, bottom.
        """
        a = self._aspect
        b = self._bounds

        if x < b.x:
            delta = b.x - x
            width -= 2 * delta
            height -= 2 * delta / a
            x = b.x
            y += delta / a
        if y < b.y:
            delta = b.y - y
            height -= 2 * delta
            width -= 2 * delta * a
            y = b.y
            x += delta * a
        if x + width > b.right:
            delta = x + width - b.right
            width -= 2 * delta
            height -= 2 * delta / a
            x += delta
            y += delta / a
        if y + height > b.bottom:
            delta = y + height - b.bottom
            height -= 2 * delta
            width -= 2 * delta * a
            y += delta
            x += delta * a

        if width <= 0 or height <= 0:
            return None
        return Rect(x, y, width, height)


def _check_rect(rect: Rect, what: str) -> None:
    components = (rect.x, rect.y, rect.width, rect.height)
    if not all(math.isfinite(c) for c in components):
        raise ValueError(f"{what} must be finite, got {rect}")
    if rect.width < 0 or rect.height < 0:
        raise ValueError(f"{what} must have non-negative size, got {rect}")
