"""Index, normalize and live-watch coding-agent session logs."""

__version__ = "0.1.0"
