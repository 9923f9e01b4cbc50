"""Configuration for DESS Harvest."""

from dessharvest.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
