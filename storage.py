"""
Session storage for scraping jobs and their results, plus result export
"""

import io
import logging
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Dict, Optional

import pandas as pd
from supabase import create_client, Client

from config import Settings
from errors import StorageWriteError
from models import JobStatus

logger = logging.getLogger(__name__)

SESSIONS_TABLE = 'scraping_sessions'
RESULTS_TABLE = 'scraping_results'

# Supabase caps a select at 1000 rows by default
SUPABASE_PAGE_SIZE = 1000

EXPORT_FIELDS = [
    'search_brand', 'search_sku', 'search_category', 'gmaps_category', 'name',
    'address', 'latitude', 'longitude', 'business_status', 'place_url',
    'place_id', 'is_brand_match'
]

EXPORT_MIMETYPES = {
    'csv': 'text/csv',
    'xlsx': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
}


class SessionStore(ABC):
    """Job status rows and result rows, keyed by job id"""

    @abstractmethod
    def create_session(self, row: dict):
        """Insert the initial session row. Raises StorageWriteError."""

    @abstractmethod
    def update_session(self, job_id: str, fields: dict):
        """Update columns of a session row. Raises StorageWriteError."""

    @abstractmethod
    def insert_results(self, job_id: str, rows: List[dict]):
        """Append result rows in the given order. Raises StorageWriteError."""

    @abstractmethod
    def get_session(self, job_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    def get_results(self, job_id: str) -> List[dict]:
        """Result rows in discovery order"""

    @abstractmethod
    def delete_session(self, job_id: str):
        ...


class MemorySessionStore(SessionStore):
    """
    In-process store for local runs and tests.

    Finished sessions are kept for retention_seconds after their last update
    and purged lazily on the next access.
    """

    def __init__(self, retention_seconds: float = 86400, clock=time.time):
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._sessions: Dict[str, dict] = {}
        self._results: Dict[str, List[dict]] = {}
        self._touched_at: Dict[str, float] = {}
        self._lock = threading.Lock()

    def _purge_expired_locked(self):
        now = self._clock()
        expired = [
            job_id for job_id, row in self._sessions.items()
            if row.get('status') in JobStatus.TERMINAL
            and now - self._touched_at.get(job_id, now) > self.retention_seconds
        ]
        for job_id in expired:
            self._drop_locked(job_id)

    def _drop_locked(self, job_id: str):
        self._sessions.pop(job_id, None)
        self._results.pop(job_id, None)
        self._touched_at.pop(job_id, None)

    def create_session(self, row: dict):
        job_id = row['job_id']
        with self._lock:
            self._purge_expired_locked()
            if job_id in self._sessions:
                raise StorageWriteError(f"Session {job_id} already exists")
            self._sessions[job_id] = dict(row)
            self._results[job_id] = []
            self._touched_at[job_id] = self._clock()

    def update_session(self, job_id: str, fields: dict):
        with self._lock:
            if job_id not in self._sessions:
                raise StorageWriteError(f"Session {job_id} not found")
            self._sessions[job_id].update(fields)
            self._touched_at[job_id] = self._clock()

    def insert_results(self, job_id: str, rows: List[dict]):
        with self._lock:
            if job_id not in self._results:
                raise StorageWriteError(f"Session {job_id} not found")
            self._results[job_id].extend(dict(r) for r in rows)
            self._touched_at[job_id] = self._clock()

    def get_session(self, job_id: str) -> Optional[dict]:
        with self._lock:
            self._purge_expired_locked()
            row = self._sessions.get(job_id)
            return dict(row) if row else None

    def get_results(self, job_id: str) -> List[dict]:
        with self._lock:
            return [dict(r) for r in self._results.get(job_id, [])]

    def delete_session(self, job_id: str):
        with self._lock:
            self._drop_locked(job_id)


class SupabaseSessionStore(SessionStore):
    """Store backed by the scraping_sessions / scraping_results tables"""

    def __init__(self, client: Client):
        self.client = client

    def create_session(self, row: dict):
        try:
            self.client.table(SESSIONS_TABLE).insert(row).execute()
        except Exception as e:
            raise StorageWriteError(f"Failed to create scraping session: {e}") from e

    def update_session(self, job_id: str, fields: dict):
        try:
            self.client.table(SESSIONS_TABLE).update(fields).eq('job_id', job_id).execute()
        except Exception as e:
            raise StorageWriteError(f"Failed to update session {job_id}: {e}") from e

    def insert_results(self, job_id: str, rows: List[dict]):
        if not rows:
            return
        try:
            self.client.table(RESULTS_TABLE).insert(rows).execute()
        except Exception as e:
            raise StorageWriteError(f"Failed to insert {len(rows)} results for {job_id}: {e}") from e

    def get_session(self, job_id: str) -> Optional[dict]:
        response = self.client.table(SESSIONS_TABLE).select('*').eq('job_id', job_id).limit(1).execute()
        return response.data[0] if response.data else None

    def get_results(self, job_id: str) -> List[dict]:
        results: List[dict] = []
        start = 0
        while True:
            response = (
                self.client.table(RESULTS_TABLE)
                .select('*')
                .eq('job_id', job_id)
                .order('result_index')
                .range(start, start + SUPABASE_PAGE_SIZE - 1)
                .execute()
            )
            page = response.data or []
            results.extend(page)
            if len(page) < SUPABASE_PAGE_SIZE:
                return results
            start += SUPABASE_PAGE_SIZE

    def delete_session(self, job_id: str):
        self.client.table(RESULTS_TABLE).delete().eq('job_id', job_id).execute()
        self.client.table(SESSIONS_TABLE).delete().eq('job_id', job_id).execute()


def create_session_store(settings: Settings) -> Optional[SessionStore]:
    """
    Build the configured store. Returns None when Supabase is selected but
    not configured (or cannot be reached), so callers can answer 500.
    """
    if settings.session_backend == 'memory':
        return MemorySessionStore(retention_seconds=settings.session_retention_hours * 3600)

    if not (settings.supabase_url and settings.supabase_key):
        return None

    try:
        client = create_client(settings.supabase_url, settings.supabase_key)
    except Exception as e:
        logger.error("Supabase connection failed: %s", e)
        return None

    logger.info("Supabase connected")
    return SupabaseSessionStore(client)


def export_results(rows: List[dict], fmt: str) -> bytes:
    """Render result rows as a CSV or Excel document"""
    df = pd.DataFrame(rows, columns=EXPORT_FIELDS)

    if fmt == 'csv':
        return df.to_csv(index=False).encode('utf-8')
    if fmt == 'xlsx':
        buffer = io.BytesIO()
        df.to_excel(buffer, index=False, engine='openpyxl')
        return buffer.getvalue()

    raise ValueError(f"Unsupported export format: {fmt}")


def save_results(rows: List[dict], path: str) -> Path:
    """Write results to path; the format follows the file extension"""
    file_path = Path(path)
    fmt = file_path.suffix.lstrip('.').lower()
    data = export_results(rows, fmt)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_bytes(data)
    return file_path
