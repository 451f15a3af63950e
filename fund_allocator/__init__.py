"""Buy-only portfolio allocation: whole-share purchases toward target proportions."""

__version__ = "1.0.0"
