"""
Conversation Lanes — per-conversation serialization.

Each conversation gets two asyncio locks:

- the *turn* lock serializes whole turns and confirmation resumptions, so two
  turns never interleave their model calls on the same history;
- the *lane* lock serializes every mutation of the conversation (appends,
  gate resolutions, scheduled firings).

A turn holds its turn lock throughout but takes the lane lock only around
mutations, never across the model call. Lock order is always turn then lane.
Different conversations never share a lock.
"""

from __future__ import annotations

import asyncio


class ConversationLanes:
    def __init__(self) -> None:
        self._turn_locks: dict[str, asyncio.Lock] = {}
        self._lane_locks: dict[str, asyncio.Lock] = {}

    def turn(self, conversation_id: str) -> asyncio.Lock:
        lock = self._turn_locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._turn_locks[conversation_id] = lock
        return lock

    def lane(self, conversation_id: str) -> asyncio.Lock:
        lock = self._lane_locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._lane_locks[conversation_id] = lock
        return lock
