"""
Data models for brand presence scraping jobs
"""

import math
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any


PLACE_URL_TEMPLATE = "https://www.google.com/maps/place/?q=place_id={place_id}"


class JobStatus:
    STARTING = 'starting'
    IN_PROGRESS = 'in_progress'
    COMPLETE = 'complete'
    FAILED = 'failed'

    TERMINAL = (COMPLETE, FAILED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def valid_lat(value: float) -> bool:
    return math.isfinite(value) and -90.0 <= value <= 90.0


def valid_lng(value: float) -> bool:
    return math.isfinite(value) and -180.0 <= value <= 180.0


@dataclass(frozen=True)
class BoundingBox:
    """Search area in degrees"""
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    @property
    def in_range(self) -> bool:
        return (
            valid_lat(self.min_lat) and valid_lat(self.max_lat)
            and valid_lng(self.min_lng) and valid_lng(self.max_lng)
        )

    @property
    def is_valid(self) -> bool:
        return self.in_range and self.min_lat <= self.max_lat and self.min_lng <= self.max_lng

    @property
    def center(self) -> tuple:
        """Returns center coordinates of the box"""
        return (
            (self.min_lat + self.max_lat) / 2,
            (self.min_lng + self.max_lng) / 2
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BoundingBox':
        return cls(
            min_lat=float(data['min_lat']),
            max_lat=float(data['max_lat']),
            min_lng=float(data['min_lng']),
            max_lng=float(data['max_lng'])
        )


@dataclass(frozen=True)
class GridPoint:
    """A sampled coordinate at which one search is performed"""
    lat: float
    lng: float


@dataclass(frozen=True)
class BrandQuery:
    """A brand to search for, with the caller's SKU and category labels"""
    brand: str
    sku: str = ''
    category: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BrandQuery':
        return cls(
            brand=str(data['brand']).strip(),
            sku=str(data.get('sku') or ''),
            category=str(data.get('category') or '')
        )


@dataclass
class ResultRecord:
    """One place found for one brand, as streamed and persisted"""
    job_id: str
    search_brand: str
    search_sku: str
    search_category: str
    gmaps_category: str
    name: str
    address: str
    latitude: Optional[float]
    longitude: Optional[float]
    business_status: str
    place_url: str
    place_id: str
    is_brand_match: bool

    @classmethod
    def from_place(cls, job_id: str, query: BrandQuery, place: Dict[str, Any]) -> Optional['ResultRecord']:
        """
        Normalize a raw Places API result.
        Returns None when the place has no place_id; such places are never kept.
        """
        place_id = place.get('place_id')
        if not place_id:
            return None

        location = (place.get('geometry') or {}).get('location') or {}
        types = place.get('types') or []
        name = place.get('name') or ''

        return cls(
            job_id=job_id,
            search_brand=query.brand,
            search_sku=query.sku,
            search_category=query.category,
            gmaps_category=types[0] if types else '',
            name=name,
            address=place.get('vicinity') or '',
            latitude=location.get('lat'),
            longitude=location.get('lng'),
            business_status=place.get('business_status') or '',
            place_url=PLACE_URL_TEMPLATE.format(place_id=place_id),
            place_id=place_id,
            is_brand_match=query.brand.lower() in name.lower()
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class JobRequest:
    """A validated scrape request"""
    job_id: str
    brands: List[BrandQuery]
    bounds: BoundingBox
    center: tuple
    api_key: str

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'JobRequest':
        """
        Build a request from the inbound JSON body.
        Raises ValueError describing the first problem found.
        """
        if not isinstance(payload, dict):
            raise ValueError("request body must be a JSON object")

        missing = [f for f in ('brands', 'cityBounds', 'cityCenter', 'apiKey', 'jobId') if not payload.get(f)]
        if missing:
            raise ValueError(f"missing fields: {', '.join(missing)}")

        raw_brands = payload['brands']
        if not isinstance(raw_brands, list):
            raise ValueError("brands must be a list")
        try:
            brands = [BrandQuery.from_dict(b) for b in raw_brands]
        except (KeyError, TypeError, AttributeError):
            raise ValueError("each brand needs a 'brand' field")
        if any(not b.brand for b in brands):
            raise ValueError("brand names must not be empty")

        try:
            bounds = BoundingBox.from_dict(payload['cityBounds'])
        except (KeyError, TypeError, ValueError):
            raise ValueError("cityBounds needs numeric min_lat, max_lat, min_lng, max_lng")
        if not bounds.in_range:
            raise ValueError("cityBounds must be finite coordinates within lat/lng range")

        center = payload['cityCenter']
        try:
            center = (float(center[0]), float(center[1]))
        except (IndexError, KeyError, TypeError, ValueError):
            raise ValueError("cityCenter must be [lat, lng]")
        if not (valid_lat(center[0]) and valid_lng(center[1])):
            raise ValueError("cityCenter must be [lat, lng]")

        return cls(
            job_id=str(payload['jobId']),
            brands=brands,
            bounds=bounds,
            center=center,
            api_key=str(payload['apiKey'])
        )


@dataclass
class ScrapingJob:
    """Progress and status of one scraping job"""
    job_id: str
    status: str = JobStatus.STARTING
    total_operations: int = 0
    completed_operations: int = 0
    current_brand: Optional[str] = None
    current_brand_index: int = 0
    total_cost: float = 0.0
    total_results: int = 0
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def percentage(self) -> int:
        return percentage(self.completed_operations, self.total_operations)

    def touch(self):
        self.updated_at = utcnow()

    def to_row(self) -> dict:
        """Session row as stored in the session store"""
        return {
            'job_id': self.job_id,
            'status': self.status,
            'total_operations': self.total_operations,
            'completed_operations': self.completed_operations,
            'current_brand': self.current_brand,
            'current_brand_index': self.current_brand_index,
            'total_cost': self.total_cost,
            'total_results': self.total_results,
            'error_message': self.error_message,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat()
        }


def percentage(current: int, total: int) -> int:
    if total <= 0:
        return 0
    return round(current / total * 100)


def status_payload(row: Dict[str, Any]) -> dict:
    """Shape a stored session row into the status query response"""
    current = row.get('completed_operations') or 0
    total = row.get('total_operations') or 0
    return {
        'jobId': row.get('job_id'),
        'status': row.get('status'),
        'progress': {
            'current': current,
            'total': total,
            'percentage': percentage(current, total),
            'currentBrand': row.get('current_brand'),
            'brandIndex': row.get('current_brand_index') or 0
        },
        'cost': row.get('total_cost') or 0,
        'totalResults': row.get('total_results') or 0,
        'updatedAt': row.get('updated_at')
    }
