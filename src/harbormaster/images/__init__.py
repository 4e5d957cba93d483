"""Images module - building, listing and tagging images."""

from __future__ import annotations

from harbormaster.images.manager import ImageManager, recognize_tag

__all__ = ["ImageManager", "recognize_tag"]
