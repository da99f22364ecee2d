"""Model artifact cache validation and readiness coordination."""

__version__ = "0.1.0"
