"""
Configuration loading for cardsync.
"""

from .config_loader import AppConfig, DEFAULT_CONFIG_PATH

__all__ = ["AppConfig", "DEFAULT_CONFIG_PATH"]
