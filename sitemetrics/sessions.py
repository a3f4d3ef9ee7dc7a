# sitemetrics/sessions.py

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Set


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PageRecord:
    """Aggregated views for a single path"""
    path: str
    views: int = 0
    unique_visitors: Set[str] = field(default_factory=set)  # Session ids
    last_accessed: datetime = field(default_factory=utcnow)

    def add_view(self, session_id: str, at: datetime) -> None:
        self.views += 1
        self.unique_visitors.add(session_id)
        self.last_accessed = at


@dataclass
class SessionRecord:
    """Single visitor session"""
    session_id: str
    user_id: Optional[str] = None
    start_time: datetime = field(default_factory=utcnow)
    last_activity: datetime = field(default_factory=utcnow)
    page_views: int = 0
    pages: List[str] = field(default_factory=list)  # Distinct, in visit order
    referrer: Optional[str] = None
    user_agent: Optional[str] = None

    def add_view(self, path: str, at: datetime) -> None:
        self.last_activity = at
        self.page_views += 1
        if path not in self.pages:
            self.pages.append(path)

    @property
    def duration_seconds(self) -> float:
        return (self.last_activity - self.start_time).total_seconds()
