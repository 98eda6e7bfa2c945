"""
Runtime configuration loaded from environment variables
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEDUP_SCOPES = ('job', 'brand')
SESSION_BACKENDS = ('supabase', 'memory')


@dataclass(frozen=True)
class Settings:
    """Tunables for the grid search, cost budget and storage"""
    supabase_url: str = ''
    supabase_key: str = ''
    session_backend: str = 'supabase'
    session_retention_hours: float = 24.0
    google_maps_api_key: str = ''

    # Grid search
    grid_spacing_km: float = 10.0
    search_radius_m: int = 5000
    max_retries: int = 3
    request_timeout: float = 10.0
    page_settle_delay: float = 2.0
    backoff_base: float = 1.0
    inter_request_delay: float = 0.3
    error_delay: float = 1.0

    # Cost budget (currency units)
    cost_per_call: float = 0.017
    cost_ceiling: float = 20000.0

    dedup_scope: str = 'job'
    stream_results: bool = False
    result_batch_size: int = 500
    status_save_interval: int = 25
    heartbeat_interval: float = 15.0

    secret_key: str = 'dev-secret-key'
    port: int = 3001
    log_level: str = 'INFO'


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {'1', 'true', 'yes', 'on'}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from the environment (and .env) once per process."""
    load_dotenv()

    dedup_scope = os.getenv('DEDUP_SCOPE', 'job').strip().lower()
    if dedup_scope not in DEDUP_SCOPES:
        logger.warning("Unknown DEDUP_SCOPE %r; falling back to 'job'", dedup_scope)
        dedup_scope = 'job'

    session_backend = os.getenv('SESSION_BACKEND', 'supabase').strip().lower()
    if session_backend not in SESSION_BACKENDS:
        logger.warning("Unknown SESSION_BACKEND %r; falling back to 'supabase'", session_backend)
        session_backend = 'supabase'

    settings = Settings(
        supabase_url=os.getenv('SUPABASE_URL', ''),
        supabase_key=os.getenv('SUPABASE_KEY', ''),
        session_backend=session_backend,
        session_retention_hours=float(os.getenv('SESSION_RETENTION_HOURS', '24')),
        google_maps_api_key=os.getenv('GOOGLE_MAPS_API_KEY', ''),
        grid_spacing_km=float(os.getenv('GRID_SPACING_KM', '10')),
        search_radius_m=int(os.getenv('SEARCH_RADIUS_M', '5000')),
        max_retries=int(os.getenv('MAX_RETRIES', '3')),
        request_timeout=float(os.getenv('REQUEST_TIMEOUT', '10')),
        page_settle_delay=float(os.getenv('PAGE_SETTLE_DELAY', '2.0')),
        backoff_base=float(os.getenv('BACKOFF_BASE', '1.0')),
        inter_request_delay=float(os.getenv('RATE_LIMIT_DELAY', '0.3')),
        error_delay=float(os.getenv('ERROR_DELAY', '1.0')),
        cost_per_call=float(os.getenv('COST_PER_CALL', '0.017')),
        cost_ceiling=float(os.getenv('COST_CEILING', '20000')),
        dedup_scope=dedup_scope,
        stream_results=_env_bool('STREAM_RESULTS', False),
        result_batch_size=int(os.getenv('RESULT_BATCH_SIZE', '500')),
        status_save_interval=int(os.getenv('STATUS_SAVE_INTERVAL', '25')),
        heartbeat_interval=float(os.getenv('HEARTBEAT_INTERVAL', '15')),
        secret_key=os.getenv('SECRET_KEY', 'dev-secret-key'),
        port=int(os.getenv('PORT', '3001')),
        log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    )

    if settings.session_backend == 'supabase' and not (settings.supabase_url and settings.supabase_key):
        logger.warning("SUPABASE_URL / SUPABASE_KEY not set; scrape endpoints will be unavailable.")

    return settings
