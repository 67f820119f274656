"""relcache: denormalized-reference consistency for a content catalog."""

__version__ = "0.1.0"
