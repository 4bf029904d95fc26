"""Configuration module for the usage bridge."""

from usage_bridge.config.settings import Settings, TrackedResource, get_settings

__all__ = ["Settings", "TrackedResource", "get_settings"]
