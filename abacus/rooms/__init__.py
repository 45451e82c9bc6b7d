"""Room allocation."""

from .allocator import RoomAllocator, choose_rooms, preference_scores

__all__ = ["RoomAllocator", "choose_rooms", "preference_scores"]
