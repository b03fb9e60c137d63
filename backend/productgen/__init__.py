"""AI product copy generation with a resumable bulk queue."""

__version__ = "0.1.0"
