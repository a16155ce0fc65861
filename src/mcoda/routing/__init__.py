"""Capability-aware agent routing with tiered fallback."""
