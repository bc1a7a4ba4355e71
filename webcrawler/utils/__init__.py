"""
Utility modules for the web crawler system.
"""

from .config import Config, ConfigManager, CrawlConfiguration, load_config, get_config

__all__ = ['Config', 'ConfigManager', 'CrawlConfiguration', 'load_config', 'get_config']
