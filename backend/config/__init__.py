"""Configuration module."""
from .settings import get_settings, Settings
from .logging_config import setup_logging, get_logger, log_context

__all__ = ["get_settings", "Settings", "setup_logging", "get_logger", "log_context"]
