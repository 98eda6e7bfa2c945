"""
Google Places Nearby Search client

One fetch covers one grid point for one brand keyword: it follows
next_page_token pagination, backs off on OVER_QUERY_LIMIT and transport
errors, and counts every HTTP attempt so the caller can bill it.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Dict, Any

import aiohttp
import requests

from errors import QuotaExceeded, TransientProviderError

logger = logging.getLogger(__name__)

NEARBY_SEARCH_URL = "https://maps.googleapis.com/maps/api/place/nearbysearch/json"

# Point used for the key validation round trip (New Delhi)
VALIDATION_LOCATION = "28.6139,77.2090"


class FetchOutcome(Enum):
    OK = 'ok'
    PARTIAL = 'partial'  # transport retries exhausted
    MALFORMED_REQUEST = 'malformed_request'
    REJECTED = 'rejected'
    QUOTA_EXCEEDED = 'quota_exceeded'


@dataclass
class FetchResult:
    """Places gathered for one grid point, and how the fetch ended"""
    places: List[Dict[str, Any]] = field(default_factory=list)
    api_calls: int = 0
    outcome: FetchOutcome = FetchOutcome.OK
    status: Optional[str] = None

    @property
    def is_fatal(self) -> bool:
        return self.outcome is FetchOutcome.QUOTA_EXCEEDED

    def raise_for_fatal(self):
        if self.is_fatal:
            raise QuotaExceeded()


class PlacesFetcher:
    """Paginated Nearby Search with retry and exponential backoff"""

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 10.0,
        page_settle_delay: float = 2.0,
        backoff_base: float = 1.0,
        sleep=asyncio.sleep,
        url: str = NEARBY_SEARCH_URL
    ):
        self.session = session
        self.timeout = timeout
        self.page_settle_delay = page_settle_delay
        self.backoff_base = backoff_base
        self.url = url
        self._sleep = sleep
        self._owns_session = False

    async def __aenter__(self):
        if self.session is None:
            self.session = aiohttp.ClientSession()
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._owns_session and self.session:
            await self.session.close()
            self.session = None
            self._owns_session = False

    def backoff(self, attempt: int) -> float:
        return (2 ** attempt) * self.backoff_base

    async def _request(self, params: dict) -> dict:
        try:
            async with self.session.get(
                self.url,
                params=params,
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                response.raise_for_status()
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransientProviderError(str(e) or e.__class__.__name__) from e

    async def fetch(
        self,
        lat: float,
        lng: float,
        keyword: str,
        radius_m: int,
        api_key: str,
        max_retries: int = 3
    ) -> FetchResult:
        """
        Fetch every page of results for keyword around (lat, lng).

        Never raises for provider trouble: the outcome on the returned
        FetchResult says whether the places are complete, partial, or whether
        the quota ran out (the only outcome that should stop a job).
        """
        result = FetchResult()
        page_token = None

        while True:
            params = {
                'key': api_key,
                'location': f"{lat},{lng}",
                'radius': radius_m,
                'keyword': keyword
            }
            if page_token:
                params['pagetoken'] = page_token

            payload = None
            attempt = 0
            while payload is None:
                attempt += 1
                result.api_calls += 1
                try:
                    data = await self._request(params)
                except TransientProviderError as e:
                    logger.warning(
                        "Error fetching places for %r at %.4f,%.4f (attempt %d/%d): %s",
                        keyword, lat, lng, attempt, max_retries, e
                    )
                    if attempt >= max_retries:
                        logger.warning("Failed after %d attempts, continuing", max_retries)
                        result.outcome = FetchOutcome.PARTIAL
                        return result
                    await self._sleep(self.backoff(attempt))
                    continue

                if data.get('status') == 'OVER_QUERY_LIMIT':
                    logger.warning("Rate limit hit, attempt %d/%d", attempt, max_retries)
                    await self._sleep(self.backoff(attempt))
                    if attempt >= max_retries:
                        result.outcome = FetchOutcome.QUOTA_EXCEEDED
                        result.status = 'OVER_QUERY_LIMIT'
                        return result
                    continue

                payload = data

            status = payload.get('status')
            result.status = status

            if status in ('OK', 'ZERO_RESULTS'):
                result.places.extend(payload.get('results') or [])
                page_token = payload.get('next_page_token')
                if not page_token:
                    return result
                # next_page_token is not valid until a short while after it is issued
                await self._sleep(self.page_settle_delay)
            elif status == 'INVALID_REQUEST':
                logger.info("Invalid request for %r, skipping", keyword)
                result.outcome = FetchOutcome.MALFORMED_REQUEST
                return result
            else:
                logger.warning(
                    "Unexpected status %s for %r: %s, skipping",
                    status, keyword, payload.get('error_message', '')
                )
                result.outcome = FetchOutcome.REJECTED
                return result


@dataclass
class KeyValidation:
    valid: bool
    reason: Optional[str] = None  # 'invalid', 'quota' or 'transient'
    error: Optional[str] = None

    def to_dict(self) -> dict:
        if self.valid:
            return {'valid': True}
        return {'valid': False, 'reason': self.reason, 'error': self.error}


def validate_api_key(api_key: str, timeout: float = 10.0) -> KeyValidation:
    """Check a key with one minimal Nearby Search call"""
    params = {
        'key': api_key,
        'location': VALIDATION_LOCATION,
        'radius': 100,
        'keyword': 'test'
    }

    try:
        response = requests.get(NEARBY_SEARCH_URL, params=params, timeout=timeout)
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning("API key validation request failed: %s", e)
        return KeyValidation(valid=False, reason='transient', error='Failed to validate API key.')

    status = data.get('status')
    if status == 'REQUEST_DENIED':
        return KeyValidation(
            valid=False,
            reason='invalid',
            error='API Key is invalid or Places API is not enabled.'
        )
    if status == 'OVER_QUERY_LIMIT':
        return KeyValidation(valid=False, reason='quota', error='API Key has exceeded its quota.')

    return KeyValidation(valid=True)
