"""Credit metering and tiered rate limiting service."""

__version__ = "0.1.0"
