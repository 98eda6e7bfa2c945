"""
Command line runner for the retail brand scraper
"""

import argparse
import csv
import logging
import uuid
from typing import List, Optional

from tqdm import tqdm

from config import Settings, get_settings
from models import BoundingBox, BrandQuery, JobRequest, ScrapingJob
from orchestrator import JobManager, JobOrchestrator
from progress import ProgressBroker, TERMINAL_MESSAGE_TYPES
from storage import MemorySessionStore, create_session_store, save_results
from tile_grid import get_city_bounds

logger = logging.getLogger(__name__)


def load_brands(path: str) -> List[BrandQuery]:
    """Read brand,sku,category rows from a CSV file"""
    with open(path, newline='', encoding='utf-8') as f:
        reader = csv.DictReader(f)
        brands = [BrandQuery.from_dict(row) for row in reader if (row.get('brand') or '').strip()]
    return brands


class BrandScraperApp:
    """Runs one job in the foreground with a progress bar"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.store = create_session_store(self.settings)
        if self.store is None:
            logger.warning("Supabase not configured; keeping results in memory for this run")
            self.store = MemorySessionStore()
        self.broker = ProgressBroker()
        self.job_manager = JobManager()

    def run(
        self,
        brands: List[BrandQuery],
        bounds: BoundingBox,
        api_key: str,
        center: Optional[tuple] = None,
        job_id: Optional[str] = None,
        output: Optional[str] = None
    ) -> ScrapingJob:
        job_request = JobRequest(
            job_id=job_id or str(uuid.uuid4())[:8],
            brands=brands,
            bounds=bounds,
            center=center or bounds.center,
            api_key=api_key
        )
        orchestrator = JobOrchestrator(job_request, self.store, self.broker, self.settings)

        print(f"\n{'='*60}")
        print("Starting Retail Brand Scraper")
        print(f"Job: {job_request.job_id}")
        print(f"Brands: {', '.join(b.brand for b in brands)}")
        print(f"Area: {bounds.min_lat:.4f}, {bounds.max_lat:.4f}, {bounds.min_lng:.4f}, {bounds.max_lng:.4f}")
        print(f"Grid: {len(orchestrator.grid)} points every {self.settings.grid_spacing_km:g}km")
        print(f"{'='*60}\n")

        subscription = self.broker.subscribe(job_request.job_id)
        thread = self.job_manager.start(orchestrator)

        try:
            with tqdm(total=orchestrator.job.total_operations, desc="Searching") as pbar:
                postfix = {}
                while True:
                    message = subscription.get()
                    if message['type'] == 'progress':
                        pbar.n = message['current']
                        postfix['brand'] = message['currentBrand']
                        pbar.set_postfix(postfix)
                    elif message['type'] == 'cost-update':
                        postfix['cost'] = f"{message['cost']:.2f}"
                        pbar.set_postfix(postfix)
                    elif message['type'] == 'error':
                        tqdm.write(f"Error: {message['message']}")
                    if message['type'] in TERMINAL_MESSAGE_TYPES:
                        break
        finally:
            self.broker.unsubscribe(job_request.job_id, subscription)

        thread.join()
        job = orchestrator.job

        results = self.store.get_results(job.job_id)
        if output:
            path = save_results(results, output)
            print(f"Saved {len(results)} results to {path}")

        print(f"\n{'='*60}")
        print(f"SCRAPING {job.status.upper()}")
        print(f"{'='*60}")
        print(f"Results: {job.total_results}")
        print(f"Brand matches: {sum(1 for r in results if r.get('is_brand_match'))}")
        print(f"API calls: {orchestrator.cost.total_calls}")
        print(f"Cost: {job.total_cost:.2f}")
        if job.error_message:
            print(f"Error: {job.error_message}")
        print(f"{'='*60}\n")

        return job


def main():
    parser = argparse.ArgumentParser(description='Retail brand presence scraper')
    parser.add_argument('--brands', required=True, help='CSV file with brand,sku,category columns')
    parser.add_argument('--city', '-c', help='City name (uses predefined bounds)')
    parser.add_argument('--bounds', '-b', help='Bounding box as min_lat,max_lat,min_lng,max_lng')
    parser.add_argument('--center', help='City center as lat,lng (default: middle of the bounds)')
    parser.add_argument('--api-key', help='Google Maps API key (default: GOOGLE_MAPS_API_KEY)')
    parser.add_argument('--job-id', help='Job identifier (default: random)')
    parser.add_argument('--output', '-o', help='Write results to a .csv or .xlsx file')

    args = parser.parse_args()
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )

    if args.city:
        bounds = get_city_bounds(args.city)
        if not bounds:
            parser.error(f"Unknown city: {args.city}. Use --bounds instead.")
    elif args.bounds:
        min_lat, max_lat, min_lng, max_lng = map(float, args.bounds.split(','))
        bounds = BoundingBox(min_lat, max_lat, min_lng, max_lng)
    else:
        parser.error("Please specify --city or --bounds")

    center = tuple(map(float, args.center.split(','))) if args.center else None

    api_key = args.api_key or settings.google_maps_api_key
    if not api_key:
        parser.error("No API key: pass --api-key or set GOOGLE_MAPS_API_KEY")

    brands = load_brands(args.brands)
    if not brands:
        parser.error(f"No brands found in {args.brands}")

    job = BrandScraperApp(settings).run(
        brands=brands,
        bounds=bounds,
        api_key=api_key,
        center=center,
        job_id=args.job_id,
        output=args.output
    )
    raise SystemExit(0 if job.status == 'complete' else 1)


if __name__ == "__main__":
    main()
