"""Typed contracts exchanged between the stargazer client, engine and store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True, slots=True)
class StargazerItem:
    """One edge of the upstream stargazers connection."""

    stargazer: str
    starred_at: datetime


@dataclass(frozen=True, slots=True)
class StargazerPage:
    """One decoded page of stargazers, ascending by `starred_at`."""

    items: list[StargazerItem] = field(default_factory=list)
    has_next: bool = False
    next_cursor: Optional[str] = None
    total_count: Optional[int] = None


@dataclass(frozen=True, slots=True)
class StarEvent:
    """Persistence-oriented star fact; natural key is (repository, stargazer)."""

    stargazer: str
    starred_at: datetime
    observed_at: datetime


@dataclass(frozen=True, slots=True)
class SyncProgress:
    """Progress emitted by the sync engine after each persisted page."""

    page_number: int
    events_in_page: int
    events_so_far: int
    estimated_total: Optional[int] = None
