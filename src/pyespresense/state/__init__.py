"""State layer.

This package is the single source of truth for per-room readings and the
resolved closest room of the tracked device.
"""
