"""Tracked media items, read by the scheduler for association checks."""

from media_scheduler.items.models import Item
from media_scheduler.items.store import ItemStore

__all__ = ["Item", "ItemStore"]
