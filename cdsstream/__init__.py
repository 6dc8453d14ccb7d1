"""Camera pipeline layout, per-viewer stream routing, WebRTC peer bookkeeping and utilities."""

__version__ = "2.0.0"