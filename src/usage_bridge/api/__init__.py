"""HTTP API of the usage bridge."""

from usage_bridge.api.app import create_app

__all__ = ["create_app"]
