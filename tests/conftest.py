"""
Shared fakes for the scraper tests
"""

import pytest

from config import Settings
from scraper import FetchOutcome, FetchResult


class RecordingSleep:
    """Stands in for asyncio.sleep and remembers every delay"""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class FakeResponse:
    def __init__(self, payload=None, error=None):
        self.payload = payload
        self.error = error

    async def __aenter__(self):
        if self.error is not None:
            raise self.error
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False

    def raise_for_status(self):
        pass

    async def json(self, content_type=None):
        return self.payload


class FakeSession:
    """
    Minimal aiohttp.ClientSession replacement. Each get() consumes the next
    scripted item (a payload dict or an exception); the last one repeats.
    """

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []
        self.closed = False

    def get(self, url, params=None, timeout=None):
        self.calls.append(dict(params or {}))
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, BaseException):
            return FakeResponse(error=item)
        return FakeResponse(payload=item)

    async def close(self):
        self.closed = True


class FakeFetcher:
    """
    PlacesFetcher replacement driven by a responder(lat, lng, keyword) that
    returns a FetchResult.
    """

    def __init__(self, responder=None):
        self.responder = responder or (lambda lat, lng, keyword: FetchResult(api_calls=1))
        self.calls = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False

    async def fetch(self, lat, lng, keyword, radius_m, api_key, max_retries=3):
        self.calls.append((lat, lng, keyword))
        return self.responder(lat, lng, keyword)


def place(place_id, name='Store', **extra):
    data = {
        'place_id': place_id,
        'name': name,
        'vicinity': f'{name} street',
        'geometry': {'location': {'lat': 28.6, 'lng': 77.2}},
        'types': ['store', 'point_of_interest'],
        'business_status': 'OPERATIONAL'
    }
    data.update(extra)
    return data


def ok_result(*places, api_calls=1):
    return FetchResult(places=list(places), api_calls=api_calls, outcome=FetchOutcome.OK, status='OK')


@pytest.fixture
def settings():
    return Settings(
        session_backend='memory',
        inter_request_delay=0.3,
        error_delay=1.0,
        page_settle_delay=2.0,
    )


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
