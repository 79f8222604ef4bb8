"""
Unit tests for camtrack.

Run:
    python -m pytest camtrack/tests -v
"""
