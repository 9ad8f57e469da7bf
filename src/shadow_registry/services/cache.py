"""Bounded LRU cache for Shadow reads."""

from __future__ import annotations

from collections import OrderedDict

from shadow_registry.domain.shadow import Shadow

DEFAULT_CACHE_SIZE = 100


class ShadowCache:
    """Least-recently-used map of shadow id → Shadow.

    Shadows are frozen, so cached values can be handed out directly.
    """

    def __init__(self, max_size: int = DEFAULT_CACHE_SIZE) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be greater than zero")
        self.max_size = max_size
        self._entries: OrderedDict[str, Shadow] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, shadow_id: str) -> Shadow | None:
        shadow = self._entries.get(shadow_id)
        if shadow is None:
            self.misses += 1
            return None
        self._entries.move_to_end(shadow_id)
        self.hits += 1
        return shadow

    def set(self, shadow: Shadow) -> None:
        self._entries[shadow.shadow_id] = shadow
        self._entries.move_to_end(shadow.shadow_id)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def has(self, shadow_id: str) -> bool:
        return shadow_id in self._entries

    def delete(self, shadow_id: str) -> None:
        self._entries.pop(shadow_id, None)

    def clear(self) -> None:
        self._entries.clear()

    @property
    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, shadow_id: object) -> bool:
        return shadow_id in self._entries
