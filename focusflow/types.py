"""
Shared enums used across the store, query layer and API.
"""

from __future__ import annotations

from enum import Enum


class EntityKind(str, Enum):
    PROJECT = "project"
    GOAL = "goal"
    TASK = "task"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class Urgency(str, Enum):
    """Task urgency. Values are the tokens stored and sent over the wire."""

    LOW = "LAAG"
    MEDIUM = "MIDDEN"
    HIGH = "HOOG"

    @property
    def rank(self) -> int:
        return _URGENCY_RANK[self]


_URGENCY_RANK = {Urgency.LOW: 0, Urgency.MEDIUM: 1, Urgency.HIGH: 2}
