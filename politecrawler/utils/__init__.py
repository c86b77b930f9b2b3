"""
Utility modules for the polite crawler.
"""

from .config import Config, ConfigManager, load_config, parse_config

__all__ = ['Config', 'ConfigManager', 'load_config', 'parse_config']
