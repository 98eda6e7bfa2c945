"""
Drives a brand scraping job: every brand is searched at every grid point,
one request at a time, with dedup and a hard cost ceiling.
"""

import asyncio
import logging
import threading
from typing import Dict, Optional

from config import Settings, get_settings
from errors import CostLimitExceeded, JobSetupError, QuotaExceeded
from models import BrandQuery, JobRequest, ResultRecord, ScrapingJob
from progress import ProgressBroker, ProgressReporter
from scraper import FetchOutcome, FetchResult, PlacesFetcher
from storage import SessionStore
from tile_grid import generate_grid
from tracking import CostTracker, Deduplicator

logger = logging.getLogger(__name__)


class JobOrchestrator:
    """Runs one job from session creation to its terminal state"""

    def __init__(
        self,
        request: JobRequest,
        store: SessionStore,
        broker: ProgressBroker,
        settings: Optional[Settings] = None,
        fetcher: Optional[PlacesFetcher] = None,
        sleep=asyncio.sleep
    ):
        self.request = request
        self.settings = settings or get_settings()
        self._sleep = sleep
        self.fetcher = fetcher or PlacesFetcher(
            timeout=self.settings.request_timeout,
            page_settle_delay=self.settings.page_settle_delay,
            backoff_base=self.settings.backoff_base,
            sleep=sleep
        )

        self.dedup = Deduplicator()
        self.cost = CostTracker(unit_cost=self.settings.cost_per_call, ceiling=self.settings.cost_ceiling)

        self.grid = generate_grid(request.bounds, self.settings.grid_spacing_km, request.center[0])
        self.job = ScrapingJob(
            job_id=request.job_id,
            total_operations=len(request.brands) * len(self.grid)
        )
        self.reporter = ProgressReporter(
            job=self.job,
            store=store,
            broker=broker,
            total_brands=len(request.brands),
            stream_results=self.settings.stream_results,
            batch_size=self.settings.result_batch_size,
            status_interval=self.settings.status_save_interval
        )

    async def run(self) -> ScrapingJob:
        job_id = self.job.job_id
        logger.info(
            "[Job %s] Grid size: %d points per brand, total operations: %d, dedup scope: %s",
            job_id, len(self.grid), self.job.total_operations, self.settings.dedup_scope
        )

        try:
            await self.reporter.create_session()
        except JobSetupError as e:
            logger.error("[Job %s] Error creating session: %s", job_id, e)
            await self.reporter.fail(str(e), session_created=False)
            return self.job

        try:
            await self.reporter.start()
            async with self.fetcher:
                for brand_index, query in enumerate(self.request.brands, start=1):
                    await self._search_brand(query, brand_index)
            await self.reporter.complete()
            logger.info(
                "[Job %s] Scraping complete! Found %d results. %s",
                job_id, self.job.total_results, self.cost.summary()
            )
        except (QuotaExceeded, CostLimitExceeded) as e:
            logger.error("[Job %s] Aborting: %s", job_id, e)
            await self.reporter.fail(str(e))
        except Exception as e:
            logger.exception("[Job %s] Scraping error", job_id)
            await self.reporter.fail(str(e))

        return self.job

    async def _search_brand(self, query: BrandQuery, brand_index: int):
        if self.settings.dedup_scope == 'brand':
            self.dedup.reset()

        logger.info(
            "[Job %s] Processing brand %d/%d: %s",
            self.job.job_id, brand_index, len(self.request.brands), query.brand
        )
        await self.reporter.brand_started(query.brand, brand_index)

        for grid_index, point in enumerate(self.grid, start=1):
            self.job.completed_operations += 1
            self.reporter.point_started(grid_index, len(self.grid))

            result = await self.fetcher.fetch(
                point.lat,
                point.lng,
                query.brand,
                self.settings.search_radius_m,
                self.request.api_key,
                self.settings.max_retries
            )
            self._check_budget(result)

            for place in result.places:
                record = ResultRecord.from_place(self.job.job_id, query, place)
                if record is None or not self.dedup.accept(record.place_id):
                    continue
                await self.reporter.result(record)

            await self.reporter.point_finished()

            if result.outcome is FetchOutcome.PARTIAL:
                logger.warning(
                    "[Job %s] Grid point %d/%d for %s returned partial results",
                    self.job.job_id, grid_index, len(self.grid), query.brand
                )
                await self._sleep(self.settings.error_delay)
            else:
                await self._sleep(self.settings.inter_request_delay)

        await self.reporter.brand_finished()

    def _check_budget(self, result: FetchResult):
        """Bill the fetch's calls, then stop the job on a fatal outcome"""
        cost = self.cost.add_calls(result.api_calls)
        self.reporter.cost_update(cost, self.cost.total_calls)

        if self.cost.exceeds():
            raise CostLimitExceeded(cost, self.cost.ceiling)
        result.raise_for_fatal()


def run_job(orchestrator: JobOrchestrator) -> ScrapingJob:
    """Run a job to completion on a fresh event loop in the current thread"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(orchestrator.run())
    finally:
        loop.close()


class JobManager:
    """Keeps track of jobs running in background threads"""

    def __init__(self):
        self.active_jobs: Dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

    def is_active(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self.active_jobs

    def start(self, orchestrator: JobOrchestrator) -> threading.Thread:
        """Run the job in a daemon thread; it outlives the request that started it"""
        job_id = orchestrator.job.job_id

        def target():
            try:
                run_job(orchestrator)
            finally:
                with self._lock:
                    self.active_jobs.pop(job_id, None)

        thread = threading.Thread(target=target, name=f"job-{job_id}")
        thread.daemon = True
        with self._lock:
            self.active_jobs[job_id] = thread
        thread.start()
        return thread
