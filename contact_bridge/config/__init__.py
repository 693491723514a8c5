"""
contact_bridge.config - Configuration management module

Contains configuration loading, validation, and typed settings.
"""

from contact_bridge.config.loader import ConfigError, ConfigLoader
from contact_bridge.config.settings import BridgeSettings

__all__ = ["BridgeSettings", "ConfigError", "ConfigLoader"]
