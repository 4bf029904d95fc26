"""OpenTelemetry integration for distributed tracing."""

from usage_bridge.telemetry.setup import get_tracer, setup_telemetry, shutdown_telemetry

__all__ = ["get_tracer", "setup_telemetry", "shutdown_telemetry"]
