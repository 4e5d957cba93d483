"""Registry module - Docker Hub API access."""

from __future__ import annotations

from harbormaster.registry.hub import HubClient

__all__ = ["HubClient"]
