"""
Progress publishing for scraping jobs

ProgressBroker is a publish/subscribe channel per job id. Jobs publish
whether or not anyone is listening; listeners that attach late or reconnect
fall back to polling the session store.

ProgressReporter turns orchestrator events into ordered progress messages
and best-effort writes to the session store.
"""

import asyncio
import logging
import queue
import threading
from typing import Dict, List, Optional

from errors import JobSetupError, StorageWriteError
from models import JobStatus, ResultRecord, ScrapingJob
from storage import SessionStore

logger = logging.getLogger(__name__)

TERMINAL_MESSAGE_TYPES = ('complete', 'error')


class ProgressBroker:
    """Fan out progress messages to the listeners of each job"""

    def __init__(self, socketio=None):
        self.socketio = socketio
        self._subscribers: Dict[str, List[queue.Queue]] = {}
        self._lock = threading.Lock()

    def subscribe(self, job_id: str) -> queue.Queue:
        subscription: queue.Queue = queue.Queue()
        with self._lock:
            self._subscribers.setdefault(job_id, []).append(subscription)
        return subscription

    def unsubscribe(self, job_id: str, subscription: queue.Queue):
        """Detach a listener; unknown or already detached ones are ignored"""
        with self._lock:
            listeners = self._subscribers.get(job_id, [])
            if subscription in listeners:
                listeners.remove(subscription)
            if not listeners:
                self._subscribers.pop(job_id, None)

    def listener_count(self, job_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(job_id, []))

    def publish(self, job_id: str, message: dict):
        with self._lock:
            listeners = list(self._subscribers.get(job_id, []))
        for subscription in listeners:
            subscription.put(message)

        if self.socketio is not None:
            try:
                self.socketio.emit('progress', {**message, 'jobId': job_id}, to=job_id)
            except Exception:
                logger.exception("[Job %s] Socket.IO emit failed", job_id)


class ProgressReporter:
    """Publishes one job's events in order and persists its state"""

    def __init__(
        self,
        job: ScrapingJob,
        store: SessionStore,
        broker: ProgressBroker,
        total_brands: int,
        stream_results: bool = False,
        batch_size: int = 500,
        status_interval: int = 25
    ):
        self.job = job
        self.store = store
        self.broker = broker
        self.total_brands = total_brands
        self.stream_results = stream_results
        self.batch_size = max(1, batch_size)
        self.status_interval = max(1, status_interval)
        self.persisted_results = 0
        self.dropped_results = 0
        self._batch: List[dict] = []
        self._sequence = 0
        self._points_since_save = 0

    def _publish(self, message_type: str, **fields):
        self.broker.publish(self.job.job_id, {'type': message_type, **fields})

    async def _write(self, what: str, fn, *args) -> bool:
        try:
            await asyncio.to_thread(fn, *args)
            return True
        except StorageWriteError as e:
            logger.error("[Job %s] %s failed: %s", self.job.job_id, what, e)
            return False

    async def _save_status(self, *columns: str) -> bool:
        if 'completed_operations' in columns:
            self._points_since_save = 0
        self.job.touch()
        row = self.job.to_row()
        fields = {c: row[c] for c in columns}
        fields['updated_at'] = row['updated_at']
        return await self._write('Session update', self.store.update_session, self.job.job_id, fields)

    async def create_session(self):
        """Insert the job's session row. Raises JobSetupError."""
        try:
            await asyncio.to_thread(self.store.create_session, self.job.to_row())
        except StorageWriteError as e:
            raise JobSetupError(str(e)) from e

    async def start(self):
        self.job.status = JobStatus.IN_PROGRESS
        self._publish('start', total=self.job.total_operations)
        await self._save_status('status')

    def _progress_message(self, grid_point: Optional[str] = None) -> dict:
        message = {
            'current': self.job.completed_operations,
            'total': self.job.total_operations,
            'percentage': self.job.percentage,
            'message': f"Searching for {self.job.current_brand}...",
            'currentBrand': self.job.current_brand,
            'brandIndex': self.job.current_brand_index,
            'totalBrands': self.total_brands
        }
        if grid_point is not None:
            message['gridPoint'] = grid_point
        return message

    async def brand_started(self, brand: str, brand_index: int):
        """brand_index is 1-based"""
        self.job.current_brand = brand
        self.job.current_brand_index = brand_index
        self._publish('progress', **self._progress_message())
        await self._save_status('current_brand', 'current_brand_index')

    def point_started(self, grid_index: int, grid_total: int):
        """grid_index is 1-based"""
        self._publish('progress', **self._progress_message(f"{grid_index}/{grid_total}"))

    async def point_finished(self):
        """Save progress to the session row every status_interval points"""
        self._points_since_save += 1
        if self._points_since_save >= self.status_interval:
            await self._save_status('completed_operations', 'total_cost')

    def cost_update(self, cost: float, api_calls: int):
        self.job.total_cost = cost
        self._publish('cost-update', cost=cost, apiCalls=api_calls)

    async def result(self, record: ResultRecord):
        row = record.to_dict()
        row['result_index'] = self._sequence
        self._sequence += 1
        self._batch.append(row)

        if self.stream_results:
            self._publish('result', result=record.to_dict())

        if len(self._batch) >= self.batch_size:
            await self.flush()

    async def flush(self):
        """Persist the pending batch; a failed batch is logged and dropped"""
        if not self._batch:
            return
        rows, self._batch = self._batch, []

        if await self._write('Result insert', self.store.insert_results, self.job.job_id, rows):
            self.persisted_results += len(rows)
            logger.info("[Job %s] Saved %d results for %s", self.job.job_id, len(rows), self.job.current_brand)
        else:
            self.dropped_results += len(rows)
            logger.error("[Job %s] Dropped %d results for %s", self.job.job_id, len(rows), self.job.current_brand)

    async def brand_finished(self):
        await self.flush()
        await self._save_status('completed_operations', 'total_cost')

    async def complete(self):
        await self.flush()
        self.job.status = JobStatus.COMPLETE
        self.job.total_results = self.persisted_results
        await self._save_status('status', 'total_results', 'completed_operations', 'total_cost')
        self._publish(
            'complete',
            jobId=self.job.job_id,
            totalFound=self.job.total_results,
            totalCost=self.job.total_cost
        )

    async def fail(self, message: str, session_created: bool = True):
        """Mark the job failed; results found so far are flushed first"""
        self.job.status = JobStatus.FAILED
        self.job.error_message = message
        if session_created:
            await self.flush()
            self.job.total_results = self.persisted_results
            await self._save_status(
                'status', 'error_message', 'total_results', 'completed_operations', 'total_cost'
            )
        self._publish('error', message=message)
