# sitemetrics/collector.py

import atexit
import math
import time
from datetime import timedelta
from pathlib import Path
from threading import Event, Lock, Thread
from typing import Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from sitemetrics.classifier import categorize_referrer, categorize_referrer_cached
from sitemetrics.config import MetricsSettings, get_metrics_config
from sitemetrics.schemas import (
    MetricsSnapshot,
    RequestDurationBuckets,
    TopPage,
    TrafficSource,
)
from sitemetrics.sessions import PageRecord, SessionRecord, utcnow
from sitemetrics import storage

ACTIVE_SESSION_WINDOW = timedelta(minutes=30)
SESSION_RETENTION = timedelta(hours=24)
TOP_PAGES_LIMIT = 5

# Rates are reported as zero until uptime reaches this
MIN_RATE_UPTIME_SECONDS = 1.0

# Fractions of the request count used for the synthetic duration buckets
DURATION_BUCKET_FRACTIONS = (0.70, 0.90, 0.98)


class MetricsCollector:
    """
    In-memory page and session tracking with derived metrics.

    Tracking calls are synchronous and never touch disk. The initial load
    runs on a daemon thread, cleanup and persistence as jobs on a daemon
    background scheduler, so state access is guarded by a lock.
    """

    def __init__(self, config: Optional[MetricsSettings] = None):
        self._config = config or get_metrics_config()
        self._logger = self._config.logger_factory()
        self._data_dir = Path(self._config.data_dir)

        self._pages: Dict[str, PageRecord] = {}
        self._sessions: Dict[str, SessionRecord] = {}
        self._request_count: int = 0
        self._error_count: int = 0
        self._lock = Lock()

        # Serializes disk writes (timer vs. shutdown)
        self._persist_lock = Lock()
        self._loaded = Event()

        self.started_at: float = time.time()
        self._destroyed = False
        self._shutdown_hook_registered = False

        # Best-effort load off the caller's thread
        self._load_thread = Thread(target=self.load_persisted_data, name="metrics-load", daemon=True)
        self._load_thread.start()

        self._scheduler = BackgroundScheduler(daemon=True)
        self._scheduler.add_job(
            self.cleanup_old_sessions,
            trigger="interval",
            seconds=self._config.cleanup_interval_ms / 1000,
            id="session_cleanup",
            replace_existing=True,
        )
        self._scheduler.add_job(
            self.persist_data,
            trigger="interval",
            seconds=self._config.persist_interval_ms / 1000,
            id="persist",
            replace_existing=True,
        )
        self._scheduler.start()

        if self._config.register_shutdown_hook:
            atexit.register(self.destroy)
            self._shutdown_hook_registered = True

    # Tracking

    def track_page_view(
        self,
        session_id: str,
        path: str,
        user_id: Optional[str] = None,
        referrer: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        """Record one view of path by session_id"""
        now = utcnow()

        with self._lock:
            page = self._pages.get(path)
            if page is None:
                page = PageRecord(path=path, last_accessed=now)
                self._pages[path] = page
            page.add_view(session_id, now)

            session = self._sessions.get(session_id)
            if session is None:
                session = SessionRecord(
                    session_id=session_id,
                    user_id=user_id,
                    start_time=now,
                    last_activity=now,
                    referrer=referrer,
                    user_agent=user_agent,
                )
                self._sessions[session_id] = session
            session.add_view(path, now)

            self._request_count += 1

    def track_error(self, session_id: Optional[str] = None, error_type: Optional[str] = None) -> None:
        """Count an error. Identifying fields are reserved for a future breakdown."""
        with self._lock:
            self._error_count += 1

    # Queries

    def get_session_metrics(self, session_id: Optional[str]) -> Optional[SessionRecord]:
        if not session_id:
            return None
        with self._lock:
            return self._sessions.get(session_id)

    def get_metrics(self) -> MetricsSnapshot:
        """Compute a fresh snapshot of all derived metrics"""
        now = utcnow()
        uptime = time.time() - self.started_at

        with self._lock:
            pages = list(self._pages.values())
            sessions = list(self._sessions.values())
            request_count = self._request_count
            error_count = self._error_count
            top_pages = self._top_pages(pages)
            traffic_sources = self._traffic_sources(sessions)
            active_cutoff = now - ACTIVE_SESSION_WINDOW
            active = [s for s in sessions if s.last_activity > active_cutoff]
            durations = [s.duration_seconds for s in active]
            single_page = sum(1 for s in sessions if s.page_views == 1)
            total_page_views = sum(page.views for page in pages)

        # Average duration over active sessions only
        avg_seconds = sum(durations) / len(durations) if durations else 0.0
        avg_minutes = int(avg_seconds // 60)
        avg_remainder = int(avg_seconds % 60)

        total_sessions = len(sessions)
        bounce_rate = 0.0
        if total_sessions:
            bounce_rate = math.floor(single_page / total_sessions * 1000 + 0.5) / 10

        if uptime >= MIN_RATE_UPTIME_SECONDS:
            request_rate = request_count / uptime
            error_rate = error_count / uptime
        else:
            request_rate = 0.0
            error_rate = 0.0

        low, mid, high = (math.floor(request_count * f) for f in DURATION_BUCKET_FRACTIONS)

        return MetricsSnapshot(
            total_visitors=total_sessions,
            active_users=len(active),
            page_views=total_page_views,
            total_requests=request_count,
            total_errors=error_count,
            avg_session_duration=f"{avg_minutes}m {avg_remainder}s",
            bounce_rate=bounce_rate,
            top_pages=top_pages,
            traffic_sources=traffic_sources,
            active_sessions=len(active),
            uptime=uptime,
            request_rate=request_rate,
            error_rate=error_rate,
            request_duration=RequestDurationBuckets(
                bucket1=low,
                bucket2=mid,
                bucket3=high,
                total=request_count,
            ),
        )

    def analyze_traffic_sources(self) -> List[TrafficSource]:
        with self._lock:
            sessions = list(self._sessions.values())
        return self._traffic_sources(sessions)

    def categorize_referrer(self, referrer: Optional[str] = None) -> str:
        return categorize_referrer(referrer, self._config.internal_domains)

    def _top_pages(self, pages: List[PageRecord]) -> List[TopPage]:
        total_views = sum(page.views for page in pages)
        ranked = sorted(pages, key=lambda page: page.views, reverse=True)[:TOP_PAGES_LIMIT]
        return [
            TopPage(
                path=page.path,
                views=page.views,
                unique_visitors=len(page.unique_visitors),
                percentage=page.views / total_views * 100 if total_views > 0 else 0.0,
            )
            for page in ranked
        ]

    def _traffic_sources(self, sessions: List[SessionRecord]) -> List[TrafficSource]:
        counts: Dict[str, int] = {}
        for session in sessions:
            source = categorize_referrer_cached(session.referrer, self._config.internal_domains)
            counts[source] = counts.get(source, 0) + 1

        total = sum(counts.values())
        sources = [
            TrafficSource(
                source=source,
                visits=visits,
                percentage=visits / total * 100 if total > 0 else 0.0,
            )
            for source, visits in counts.items()
        ]
        sources.sort(key=lambda item: item.visits, reverse=True)
        return sources

    # Housekeeping

    def cleanup_old_sessions(self) -> int:
        """Drop sessions idle for more than a day. Returns how many were removed."""
        cutoff = utcnow() - SESSION_RETENTION

        with self._lock:
            stale = [sid for sid, s in self._sessions.items() if s.last_activity < cutoff]
            for session_id in stale:
                del self._sessions[session_id]

        if stale and self._config.is_development:
            self._logger.info(f"[MetricsCollector] Cleaned up {len(stale)} old sessions")

        return len(stale)

    def load_persisted_data(self) -> None:
        """
        Merge persisted pages and sessions into memory.
        Keys already tracked since startup win over what is on disk.
        Missing or corrupt files leave the store as it is.
        """
        page_file = self._data_dir / storage.PAGE_METRICS_FILE
        session_file = self._data_dir / storage.SESSION_METRICS_FILE

        try:
            pages = storage.load_pages(page_file.read_bytes())
        except Exception as e:
            pages = []
            if self._config.is_development:
                self._logger.info(f"[MetricsCollector] No persisted page metrics loaded: {e}")

        try:
            sessions = storage.load_sessions(session_file.read_bytes())
        except Exception as e:
            sessions = []
            if self._config.is_development:
                self._logger.info(f"[MetricsCollector] No persisted session metrics loaded: {e}")

        with self._lock:
            for page in pages:
                self._pages.setdefault(page.path, page)
            for session in sessions:
                self._sessions.setdefault(session.session_id, session)
        self._loaded.set()

        if (pages or sessions) and self._config.is_development:
            self._logger.info(
                f"[MetricsCollector] Loaded persisted metrics: {len(pages)} pages, {len(sessions)} sessions"
            )

    def wait_for_initial_load(self, timeout: Optional[float] = None) -> bool:
        """Block until persisted data has been read once. Returns False on timeout."""
        return self._loaded.wait(timeout)

    def persist_data(self) -> None:
        """Write both stores to disk. Failures are logged, never raised."""
        # Never write before the stores on disk have been merged in
        self._load_thread.join()

        with self._persist_lock:
            try:
                with self._lock:
                    page_payload = storage.dump_pages(self._pages.values())
                    session_payload = storage.dump_sessions(self._sessions.values())

                storage.write_atomic(self._data_dir / storage.PAGE_METRICS_FILE, page_payload)
                storage.write_atomic(self._data_dir / storage.SESSION_METRICS_FILE, session_payload)

                if self._config.is_development:
                    self._logger.info("[MetricsCollector] Persisted metrics to disk")

            except Exception as e:
                self._logger.error(
                    f"[MetricsCollector] Failed to persist metrics: {e}",
                    extra={"error": str(e)},
                )

    # Lifecycle

    def destroy(self) -> None:
        """Stop background jobs and write a final snapshot"""
        if self._destroyed:
            return
        self._destroyed = True

        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

        if self._shutdown_hook_registered:
            atexit.unregister(self.destroy)
            self._shutdown_hook_registered = False

        self.persist_data()


def create_metrics_collector(config: Optional[MetricsSettings] = None) -> MetricsCollector:
    return MetricsCollector(config)
