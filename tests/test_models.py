"""
Tests for request parsing and result normalization
"""

import pytest

from models import BrandQuery, JobRequest, ResultRecord, ScrapingJob, status_payload
from conftest import place


VALID_PAYLOAD = {
    'brands': [{'brand': 'Bata', 'sku': 'SKU-1', 'category': 'Footwear'}],
    'cityBounds': {'min_lat': 28.4, 'max_lat': 28.8, 'min_lng': 77.0, 'max_lng': 77.4},
    'cityCenter': [28.6, 77.2],
    'apiKey': 'KEY',
    'jobId': 'job-1'
}


class TestResultRecord:

    def test_from_place_maps_fields(self):
        query = BrandQuery('Bata', 'SKU-1', 'Footwear')
        record = ResultRecord.from_place('job-1', query, place('p1', name='BATA Store Connaught'))

        assert record.to_dict() == {
            'job_id': 'job-1',
            'search_brand': 'Bata',
            'search_sku': 'SKU-1',
            'search_category': 'Footwear',
            'gmaps_category': 'store',
            'name': 'BATA Store Connaught',
            'address': 'BATA Store Connaught street',
            'latitude': 28.6,
            'longitude': 77.2,
            'business_status': 'OPERATIONAL',
            'place_url': 'https://www.google.com/maps/place/?q=place_id=p1',
            'place_id': 'p1',
            'is_brand_match': True
        }

    def test_brand_match_is_case_insensitive_substring(self):
        query = BrandQuery('Bata')
        assert ResultRecord.from_place('j', query, place('p1', name='bata shoes')).is_brand_match
        assert not ResultRecord.from_place('j', query, place('p2', name='Liberty Shoes')).is_brand_match

    def test_missing_place_id_is_dropped(self):
        query = BrandQuery('Bata')
        assert ResultRecord.from_place('j', query, {'name': 'Bata'}) is None
        assert ResultRecord.from_place('j', query, {'place_id': '', 'name': 'Bata'}) is None

    def test_sparse_place(self):
        record = ResultRecord.from_place('j', BrandQuery('Bata'), {'place_id': 'p1'})
        assert record.name == ''
        assert record.gmaps_category == ''
        assert record.latitude is None
        assert record.longitude is None
        assert record.is_brand_match is False


class TestJobRequest:

    def test_valid_payload(self):
        request = JobRequest.from_payload(VALID_PAYLOAD)
        assert request.job_id == 'job-1'
        assert request.brands == [BrandQuery('Bata', 'SKU-1', 'Footwear')]
        assert request.center == (28.6, 77.2)
        assert request.bounds.is_valid

    @pytest.mark.parametrize('field', ['brands', 'cityBounds', 'cityCenter', 'apiKey', 'jobId'])
    def test_missing_field(self, field):
        payload = {k: v for k, v in VALID_PAYLOAD.items() if k != field}
        with pytest.raises(ValueError, match=field):
            JobRequest.from_payload(payload)

    def test_bad_bounds(self):
        payload = dict(VALID_PAYLOAD, cityBounds={'min_lat': 'north'})
        with pytest.raises(ValueError, match='cityBounds'):
            JobRequest.from_payload(payload)

    @pytest.mark.parametrize('value', ['inf', float('inf'), float('-inf'), float('nan'), 181])
    def test_non_finite_or_out_of_range_bounds(self, value):
        bounds = dict(VALID_PAYLOAD['cityBounds'], max_lng=value)
        with pytest.raises(ValueError, match='cityBounds'):
            JobRequest.from_payload(dict(VALID_PAYLOAD, cityBounds=bounds))

    def test_inverted_bounds_are_accepted(self):
        bounds = {'min_lat': 28.8, 'max_lat': 28.4, 'min_lng': 77.0, 'max_lng': 77.4}
        request = JobRequest.from_payload(dict(VALID_PAYLOAD, cityBounds=bounds))
        assert not request.bounds.is_valid

    def test_bad_center(self):
        with pytest.raises(ValueError, match='cityCenter'):
            JobRequest.from_payload(dict(VALID_PAYLOAD, cityCenter=[28.6]))

    @pytest.mark.parametrize('center', [[float('nan'), 77.2], [28.6, 'inf'], [91, 77.2]])
    def test_non_finite_or_out_of_range_center(self, center):
        with pytest.raises(ValueError, match='cityCenter'):
            JobRequest.from_payload(dict(VALID_PAYLOAD, cityCenter=center))

    @pytest.mark.parametrize('payload', [[1], 'jobs', 7])
    def test_payload_must_be_an_object(self, payload):
        with pytest.raises(ValueError, match='JSON object'):
            JobRequest.from_payload(payload)

    def test_brand_without_name(self):
        with pytest.raises(ValueError):
            JobRequest.from_payload(dict(VALID_PAYLOAD, brands=[{'sku': 'x'}]))


class TestStatusPayload:

    def test_shapes_session_row(self):
        job = ScrapingJob(
            job_id='job-1',
            status='in_progress',
            total_operations=40,
            completed_operations=10,
            current_brand='Bata',
            current_brand_index=1,
            total_cost=0.17,
            total_results=3
        )
        payload = status_payload(job.to_row())

        assert payload['jobId'] == 'job-1'
        assert payload['status'] == 'in_progress'
        assert payload['progress'] == {
            'current': 10, 'total': 40, 'percentage': 25, 'currentBrand': 'Bata', 'brandIndex': 1
        }
        assert payload['cost'] == 0.17
        assert payload['totalResults'] == 3
        assert payload['updatedAt'] == job.updated_at.isoformat()

    def test_empty_job_percentage(self):
        assert ScrapingJob(job_id='j').percentage == 0
