"""
geometry.py — Rectangles in Scene Pixel Space
==============================================

Every rectangle in camtrack (a raw detection, the smoothed region of
interest, the final crop window) is a `Rect` in scene pixel
coordinates with floating-point components.  Detectors produce integer
boxes; they are converted to floats at the boundary so the framing
maths never has to think about rounding.
"""

from dataclasses import dataclass
from typing import Iterable, Tuple


@dataclass(frozen=True)
class Rect:
    """
    Axis-aligned rectangle.

    Attributes:
        x:      Left edge   (pixels from left)
        y:      Top edge    (pixels from top)
        width:  Box width   (pixels, non-negative for real boxes)
        height: Box height  (pixels, non-negative for real boxes)
    """
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_xywh(cls, x, y, width, height) -> "Rect":
        return cls(float(x), float(y), float(width), float(height))

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def centre(self) -> Tuple[float, float]:
        """Return the (cx, cy) centre of the rectangle."""
        return (self.x + self.width / 2, self.y + self.height / 2)

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def aspect(self) -> float:
        """width / height; only meaningful for non-degenerate rects."""
        return self.width / self.height

    def is_degenerate(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def contains(self, other: "Rect", tolerance: float = 1e-6) -> bool:
        """True if `other` lies entirely inside this rectangle."""
        return (
            other.x >= self.x - tolerance
            and other.y >= self.y - tolerance
            and other.right <= self.right + tolerance
            and other.bottom <= self.bottom + tolerance
        )

    def union(self, other: "Rect") -> "Rect":
        """Smallest rectangle enclosing both `self` and `other`."""
        left = min(self.x, other.x)
        top = min(self.y, other.y)
        right = max(self.right, other.right)
        bottom = max(self.bottom, other.bottom)
        return Rect(left, top, right - left, bottom - top)

    __or__ = union

    def scaled(self, factor: float) -> "Rect":
        """Scale every component (used to undo detector downscaling)."""
        return Rect(
            self.x * factor,
            self.y * factor,
            self.width * factor,
            self.height * factor,
        )

    def as_int_tuple(self) -> Tuple[int, int, int, int]:
        return (int(round(self.x)), int(round(self.y)),
                int(round(self.width)), int(round(self.height)))


def bounding_rect(rects: Iterable[Rect]) -> Rect:
    """
    Union of a non-empty sequence of rectangles.

    Multiple faces in frame are framed together: the controller tracks
    the box that encloses all of them.

    Raises:
        ValueError: If `rects` is empty.  Callers are expected to skip
                    the tick when there are no detections.
    """
    it = iter(rects)
    try:
        result = next(it)
    except StopIteration:
        raise ValueError("bounding_rect() requires at least one rectangle") from None

    for rect in it:
        result = result | rect
    return result
