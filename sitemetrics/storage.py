# sitemetrics/storage.py

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Union

from pydantic import TypeAdapter

from sitemetrics.schemas import StoredPage, StoredSession
from sitemetrics.sessions import PageRecord, SessionRecord

PAGE_METRICS_FILE = "page-metrics.json"
SESSION_METRICS_FILE = "session-metrics.json"

_pages_adapter = TypeAdapter(List[StoredPage])
_sessions_adapter = TypeAdapter(List[StoredSession])


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def dump_pages(pages: Iterable[PageRecord]) -> bytes:
    """Serialize page records, visitor sets become arrays"""
    documents = [
        StoredPage(
            path=page.path,
            views=page.views,
            unique_visitors=sorted(page.unique_visitors),
            last_accessed=page.last_accessed,
        )
        for page in pages
    ]
    return _pages_adapter.dump_json(documents, by_alias=True, indent=2)


def dump_sessions(sessions: Iterable[SessionRecord]) -> bytes:
    """Serialize session records, absent optionals are omitted"""
    documents = [
        StoredSession(
            session_id=session.session_id,
            user_id=session.user_id,
            start_time=session.start_time,
            last_activity=session.last_activity,
            page_views=session.page_views,
            pages=list(session.pages),
            referrer=session.referrer,
            user_agent=session.user_agent,
        )
        for session in sessions
    ]
    return _sessions_adapter.dump_json(documents, by_alias=True, exclude_none=True, indent=2)


def load_pages(raw: Union[str, bytes]) -> List[PageRecord]:
    """Parse a page document. Raises ValidationError on bad input."""
    return [
        PageRecord(
            path=doc.path,
            views=doc.views,
            unique_visitors=set(doc.unique_visitors),
            last_accessed=_as_utc(doc.last_accessed),
        )
        for doc in _pages_adapter.validate_json(raw)
    ]


def load_sessions(raw: Union[str, bytes]) -> List[SessionRecord]:
    """Parse a session document. Raises ValidationError on bad input."""
    return [
        SessionRecord(
            session_id=doc.session_id,
            user_id=doc.user_id,
            start_time=_as_utc(doc.start_time),
            last_activity=_as_utc(doc.last_activity),
            page_views=doc.page_views,
            pages=list(doc.pages),
            referrer=doc.referrer,
            user_agent=doc.user_agent,
        )
        for doc in _sessions_adapter.validate_json(raw)
    ]


def write_atomic(path: Path, payload: bytes) -> None:
    """Write via a temp file in the same directory, then rename over the target"""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(payload)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
