"""Process-wide primitives shared by every payflow component."""
from .clock import Clock, SystemClock
from .logging_config import setup_logging

__all__ = ["Clock", "SystemClock", "setup_logging"]
