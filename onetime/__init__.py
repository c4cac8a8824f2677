"""Onetime: key accounting for one-time-pad messaging."""

__version__ = "0.1.0"

from .config import Config, ConfigProfile, configure_logging
from .keys import KeyHistory, KeyInterval

__all__ = ["Config", "ConfigProfile", "KeyHistory", "KeyInterval", "configure_logging"]
