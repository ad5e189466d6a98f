"""agentpm - epic tracking for agent-driven work."""

__version__ = "0.4.0"
