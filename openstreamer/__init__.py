"""Live streaming building blocks: HLS and DASH packaging, FFmpeg helpers and JSON storage."""

__version__ = "0.1.0"