"""
smoothing.py — Scalar Motion Smoothers
=======================================

Purpose:
  Raw per-frame face detections jump around due to detector noise,
  slight head movements, and missed frames.  Cropping directly to
  those positions produces a jittery, seasick output.

  This module provides the two single-value filters the framing
  controller is built from, and a container that chains them:

    1. **Low-Pass**: exponential moving average.  Removes jitter,
       but on a large jump it starts moving fast and then crawls.
    2. **Bounded-Acceleration**: a discrete actuator with capped
       speed and capped acceleration.  Ramps up, cruises, and brakes
       exactly onto the target without overshooting.
    3. **ComposedSmoother**: a pipeline of stages; each stage's output
       is the next stage's target.

  Chaining Bounded-Acceleration → Low-Pass gives motion that never
  lurches (bounded acceleration) and has no residual jitter (low-pass).

Architecture:
  target ──▶ ┌──────────────────┐ ──▶ ┌──────────┐ ──▶ value
             │ BoundedAccel     │     │ LowPass  │
             └──────────────────┘     └──────────┘

All values are in "per tick" units: one tick is one processed frame.
"""

import enum
from typing import Iterable, Optional, Tuple, Union


def _require_positive(name: str, value: float) -> float:
    value = float(value)
    if not value > 0:
        raise ValueError(f"{name} must be > 0, got {value}")
    return value


class SmootherKind(str, enum.Enum):
    LOW_PASS = "low_pass"
    BOUNDED_ACCEL = "bounded_accel"


# ═════════════════════════════════════════════════════════════
# 1. LOW-PASS FILTER
# ═════════════════════════════════════════════════════════════

class LowPassSmoother:
    """
    Exponential moving average.

    value = value × (1 - α) + target × α

    α near 1 tracks the target almost immediately; α near 0 barely
    moves (heavy smoothing, high latency).
    """

    kind = SmootherKind.LOW_PASS

    def __init__(self, initial: float, coefficient: float):
        """
        Args:
            initial:     Starting value (no warm-up: the filter is
                         seeded, not snapped to the first target).
            coefficient: α in (0, 1].
        """
        self._value = float(initial)
        self.coefficient = coefficient

    @property
    def coefficient(self) -> float:
        return self._coefficient

    @coefficient.setter
    def coefficient(self, alpha: float) -> None:
        alpha = float(alpha)
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"low-pass coefficient must be in (0, 1], got {alpha}")
        self._coefficient = alpha

    def update(self, target: float) -> float:
        """Move toward `target` and return the new value."""
        alpha = self._coefficient
        self._value = self._value * (1.0 - alpha) + float(target) * alpha
        return self._value

    @property
    def value(self) -> float:
        return self._value

    def __repr__(self) -> str:
        return f"LowPassSmoother(value={self._value:.3f}, coefficient={self._coefficient})"


# ═════════════════════════════════════════════════════════════
# 2. BOUNDED-ACCELERATION FILTER
# ═════════════════════════════════════════════════════════════

class BoundedAccelSmoother:
    """
    Constant acceleration with a bounded velocity.

    Each update the velocity changes by at most `max_acceleration`
    toward the target and is capped at `max_velocity`.  The final step
    is shortened so the value lands exactly on the target, so the
    acceleration can be lower than the cap at the end of a slew.

    The value never crosses the target in a single update.  While the
    velocity still points away from a target that just changed
    direction, the value keeps drifting away while it decelerates,
    like something with mass.  Once it sits exactly on the target it
    is at rest: the velocity is zero.

    An optional `lower` bound stops the value there (with zero
    velocity) instead of letting momentum carry it below, e.g. for
    an area that must never go negative.
    """

    kind = SmootherKind.BOUNDED_ACCEL

    def __init__(
        self,
        initial: float,
        max_velocity: float,
        max_acceleration: float,
        lower: Optional[float] = None,
    ):
        self._lower = None if lower is None else float(lower)
        if self._lower is not None and float(initial) < self._lower:
            raise ValueError(f"initial value {initial} is below the lower bound {lower}")
        self._value = float(initial)
        self._velocity = 0.0
        self.set_limits(max_velocity, max_acceleration)

    def set_limits(self, max_velocity: float, max_acceleration: float) -> None:
        """Replace the caps; position and velocity are preserved."""
        self._max_velocity = _require_positive("max_velocity", max_velocity)
        self._max_acceleration = _require_positive("max_acceleration", max_acceleration)

    @property
    def max_velocity(self) -> float:
        return self._max_velocity

    @property
    def max_acceleration(self) -> float:
        return self._max_acceleration

    @property
    def lower(self) -> Optional[float]:
        return self._lower

    def update(self, target: float) -> float:
        """Advance one tick toward `target` and return the new value."""
        target = float(target)
        s, ds = self._value, self._velocity

        if target < s:
            ds = max(ds - self._max_acceleration, -self._max_velocity)
            if s + ds <= target:
                s, ds = target, 0.0     # brake onto the target and stop
            else:
                s += ds
        elif target > s:
            ds = min(ds + self._max_acceleration, self._max_velocity)
            if s + ds >= target:
                s, ds = target, 0.0
            else:
                s += ds

        if self._lower is not None and s < self._lower:
            s, ds = self._lower, 0.0

        self._value, self._velocity = s, ds
        return s

    @property
    def value(self) -> float:
        return self._value

    @property
    def velocity(self) -> float:
        """Last step taken, in units per tick; zero once resting on the target."""
        return self._velocity

    def __repr__(self) -> str:
        return (
            f"BoundedAccelSmoother(value={self._value:.3f}, "
            f"velocity={self._velocity:.3f}, "
            f"max_velocity={self._max_velocity}, "
            f"max_acceleration={self._max_acceleration})"
        )


ScalarSmoother = Union[LowPassSmoother, BoundedAccelSmoother]


def make_smoother(kind: SmootherKind, initial: float, **params) -> ScalarSmoother:
    """
    Build a scalar smoother of the given kind.

    Args:
        kind:    SmootherKind (or its string value).
        initial: Starting value.
        params:  `coefficient` for LOW_PASS;
                 `max_velocity`, `max_acceleration` and optionally
                 `lower` for BOUNDED_ACCEL.

    Raises:
        ValueError: Unknown kind or invalid parameters.
    """
    kind = SmootherKind(kind)
    if kind is SmootherKind.LOW_PASS:
        required = ("coefficient",)
    else:
        required = ("max_velocity", "max_acceleration")

    missing = [name for name in required if name not in params]
    if missing:
        raise ValueError(f"{kind.value} smoother needs {', '.join(missing)}")

    if kind is SmootherKind.LOW_PASS:
        return LowPassSmoother(initial, coefficient=params["coefficient"])
    return BoundedAccelSmoother(
        initial,
        max_velocity=params["max_velocity"],
        max_acceleration=params["max_acceleration"],
        lower=params.get("lower"),
    )


# ═════════════════════════════════════════════════════════════
# 3. COMPOSED SMOOTHER  (pipeline of stages)
# ═════════════════════════════════════════════════════════════

class ComposedSmoother:
    """
    Feed a target through an ordered list of stages.

    Stage 1 receives the target; every later stage receives the value
    of the stage before it.  `value` is the last stage's value.  Stages
    can themselves be ComposedSmoothers.

    Usage:
        centre_x = ComposedSmoother(
            BoundedAccelSmoother(720.0, max_velocity=1.0, max_acceleration=0.075),
            LowPassSmoother(720.0, coefficient=0.01),
        )
        for cx in detections:
            centre_x.update(cx)
    """

    def __init__(self, *stages: "Stage"):
        if not stages:
            raise ValueError("ComposedSmoother needs at least one stage")
        self._stages: Tuple["Stage", ...] = tuple(stages)

    @classmethod
    def from_stages(cls, stages: Iterable["Stage"]) -> "ComposedSmoother":
        return cls(*stages)

    @property
    def stages(self) -> Tuple["Stage", ...]:
        return self._stages

    def update(self, target: float) -> float:
        value = target
        for stage in self._stages:
            value = stage.update(value)
        return value

    @property
    def value(self) -> float:
        return self._stages[-1].value

    def __repr__(self) -> str:
        inner = " -> ".join(repr(stage) for stage in self._stages)
        return f"ComposedSmoother({inner})"


Stage = Union[LowPassSmoother, BoundedAccelSmoother, ComposedSmoother]
