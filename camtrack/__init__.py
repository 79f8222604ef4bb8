"""camtrack: smooth auto-framing for face-tracking webcams."""

__version__ = "0.1.0"
