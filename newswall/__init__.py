"""Live terminal wall of RSS headlines and Telegram chat messages."""

__version__ = "0.1.0"
