"""
Core application modules.
Contains configuration, logging, metrics and connection management.
"""
from .config import Settings, load_settings

__all__ = ["Settings", "load_settings"]
