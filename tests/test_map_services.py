"""
Tests for the HTTP map adapters and the push-fed positioning source.
"""

import pytest
import requests

from errand_geo.errors import (
    GeoEngineError,
    PermissionDenied,
    PositionErrorKind,
    PositionUnavailable,
    RoutingFailure,
)
from errand_geo.services.map_services import (
    DIRECTIONS_URL,
    GEOCODE_URL,
    NETWORK_ACCURACY_METERS,
    GoogleGeocodingService,
    GoogleRoutingService,
    IpNetworkLocator,
    PushPositionSource,
    build_map_services,
    decode_polyline,
)

from conftest import make_location


# ============ requests stand-in ============

class StubResponse:

    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'{self.status_code} error')

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class RecordingSession:
    """Answers every GET with the queued responses and records the calls."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append({'url': url, 'params': params, 'timeout': timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def directions_payload(**leg):
    leg.setdefault('distance', {'value': 1200})
    leg.setdefault('duration', {'value': 420})
    return {
        'status': 'OK',
        'routes': [{
            'legs': [leg],
            'overview_polyline': {'points': '_p~iF~ps|U_ulLnnqC_mqNvxq`@'},
        }],
    }


class TestDecodePolyline:
    """Tests for decode_polyline"""

    def test_reference_polyline(self):
        points = decode_polyline('_p~iF~ps|U_ulLnnqC_mqNvxq`@')

        assert [(p.lat, p.lng) for p in points] == [
            pytest.approx((38.5, -120.2)),
            pytest.approx((40.7, -120.95)),
            pytest.approx((43.252, -126.453)),
        ]

    def test_empty(self):
        assert decode_polyline('') == []


class TestGoogleRouting:
    """Tests for GoogleRoutingService.route"""

    def test_parses_leg_and_path(self):
        session = RecordingSession(StubResponse(directions_payload()))
        router = GoogleRoutingService('key', travel_mode='walking', session=session)

        estimate = router.route(make_location(), make_location(29.6513, -82.3429))

        assert estimate.distance_meters == 1200
        assert estimate.duration_seconds == 420
        assert len(estimate.path_points) == 3
        call = session.calls[0]
        assert call['url'] == DIRECTIONS_URL
        assert call['params']['mode'] == 'walking'
        assert call['params']['destination'] == '29.6513,-82.3429'

    def test_non_ok_status(self):
        session = RecordingSession(StubResponse({'status': 'ZERO_RESULTS', 'routes': []}))
        router = GoogleRoutingService('key', session=session)

        with pytest.raises(RoutingFailure, match='ZERO_RESULTS'):
            router.route(make_location(), make_location(29.65, -82.34))

    def test_route_without_legs(self):
        session = RecordingSession(StubResponse({'status': 'OK', 'routes': [{'legs': []}]}))
        router = GoogleRoutingService('key', session=session)

        with pytest.raises(RoutingFailure):
            router.route(make_location(), make_location(29.65, -82.34))

    def test_leg_missing_duration(self):
        session = RecordingSession(StubResponse(directions_payload(duration=None)))
        router = GoogleRoutingService('key', session=session)

        with pytest.raises(RoutingFailure):
            router.route(make_location(), make_location(29.65, -82.34))

    def test_http_error(self):
        session = RecordingSession(requests.ConnectionError('offline'))
        router = GoogleRoutingService('key', session=session)

        with pytest.raises(RoutingFailure):
            router.route(make_location(), make_location(29.65, -82.34))


class TestGoogleGeocoding:
    """Tests for GoogleGeocodingService"""

    SUFFIX = 'University of Florida, Gainesville, FL'

    def geocode_ok(self, lat=29.6513, lng=-82.3429, address='Library West, Gainesville, FL'):
        return StubResponse({
            'status': 'OK',
            'results': [{'geometry': {'location': {'lat': lat, 'lng': lng}}, 'formatted_address': address}],
        })

    def test_forward_scopes_to_campus(self):
        session = RecordingSession(self.geocode_ok())
        geocoder = GoogleGeocodingService('key', address_suffix=self.SUFFIX, session=session)

        location = geocoder.forward('Library West')

        assert session.calls[0]['url'] == GEOCODE_URL
        assert session.calls[0]['params']['address'] == f'Library West, {self.SUFFIX}'
        assert location.lat == 29.6513
        assert location.address == 'Library West, Gainesville, FL'

    def test_forward_does_not_repeat_suffix(self):
        session = RecordingSession(self.geocode_ok())
        geocoder = GoogleGeocodingService('key', address_suffix=self.SUFFIX, session=session)

        geocoder.forward('Reitz Union, university of florida, gainesville, fl')

        assert session.calls[0]['params']['address'] == 'Reitz Union, university of florida, gainesville, fl'

    def test_forward_no_results(self):
        session = RecordingSession(StubResponse({'status': 'ZERO_RESULTS', 'results': []}))
        geocoder = GoogleGeocodingService('key', session=session)

        with pytest.raises(GeoEngineError):
            geocoder.forward('Nowhere Hall')

    def test_forward_empty_address(self):
        geocoder = GoogleGeocodingService('key', session=RecordingSession())

        with pytest.raises(GeoEngineError):
            geocoder.forward('   ')

    def test_reverse_failure_is_none(self):
        session = RecordingSession(requests.Timeout('slow'))
        geocoder = GoogleGeocodingService('key', session=session)

        assert geocoder.reverse(make_location()) is None


class TestIpNetworkLocator:
    """Tests for IpNetworkLocator"""

    def ipapi_ok(self):
        return StubResponse({
            'latitude': 29.6516,
            'longitude': -82.3248,
            'city': 'Gainesville',
            'region': 'Florida',
            'country_name': 'United States',
        })

    def test_looks_up_the_client_address(self):
        session = RecordingSession(self.ipapi_ok())
        locator = IpNetworkLocator(session=session)

        location = locator.locate('8.8.4.4')

        assert session.calls[0]['url'] == 'https://ipapi.co/8.8.4.4/json/'
        assert location.lat == 29.6516
        assert location.accuracy_meters == NETWORK_ACCURACY_METERS
        assert location.address == 'Gainesville, Florida, United States'

    @pytest.mark.parametrize('client_ip', [None, '', 'not-an-ip', '127.0.0.1', '10.1.2.3', '192.168.0.8'])
    def test_unusable_address_makes_no_request(self, client_ip):
        session = RecordingSession()
        locator = IpNetworkLocator(session=session)

        assert locator.locate(client_ip) is None
        assert session.calls == []

    def test_missing_coordinates(self):
        session = RecordingSession(StubResponse({'error': True, 'reason': 'RateLimited'}))
        locator = IpNetworkLocator(session=session)

        assert locator.locate('8.8.4.4') is None

    def test_request_failure(self):
        session = RecordingSession(requests.ConnectionError('offline'))
        locator = IpNetworkLocator(session=session)

        assert locator.locate('8.8.4.4') is None


class TestPushPositionSource:
    """Tests for PushPositionSource"""

    def test_current_position_returns_pushed_fix(self):
        source = PushPositionSource()
        source.push(make_location(accuracy_meters=12))

        assert source.get_current_position(timeout=0.1).accuracy_meters == 12

    def test_high_accuracy_ignores_coarse_fix(self):
        source = PushPositionSource(high_accuracy_max_meters=100)
        source.push(make_location(accuracy_meters=900))

        with pytest.raises(PositionUnavailable):
            source.get_current_position(high_accuracy=True, timeout=0.05)
        assert source.get_current_position(high_accuracy=False, timeout=0.05).accuracy_meters == 900

    def test_error_before_request_is_not_replayed(self):
        source = PushPositionSource()
        source.report_error(PositionErrorKind.PERMISSION_DENIED)

        # Only errors reported while waiting count
        with pytest.raises(PositionUnavailable) as excinfo:
            source.get_current_position(timeout=0.05)
        assert not isinstance(excinfo.value, PermissionDenied)

    def test_watch_replays_fix_pushed_after_last_request(self):
        source = PushPositionSource()
        source.push(make_location())
        source.get_current_position(timeout=0.1)
        source.push(make_location(29.6480, -82.3460))

        received = []
        source.start_watching(received.append, lambda kind, message: None)

        assert [location.lat for location in received] == [29.6480]

    def test_watch_does_not_replay_served_fix(self):
        source = PushPositionSource()
        source.push(make_location())
        source.get_current_position(timeout=0.1)

        received = []
        cancel = source.start_watching(received.append, lambda kind, message: None)
        cancel()

        assert received == []
        assert source.watcher_count == 0


class TestBuildMapServices:
    """Tests for build_map_services"""

    def test_without_api_key(self):
        services = build_map_services({'GOOGLE_MAPS_API_KEY': '', 'NETWORK_LOCATOR_URL': None})

        assert services.network_locator is None
        with pytest.raises(GeoEngineError):
            services.geocoder.forward('Library West')
        with pytest.raises(RoutingFailure):
            services.router.route(make_location(), make_location())

    def test_with_api_key(self):
        services = build_map_services({
            'GOOGLE_MAPS_API_KEY': 'key',
            'CAMPUS_ADDRESS_SUFFIX': 'Gainesville, FL',
            'NETWORK_LOCATOR_URL': 'https://ipapi.co/{ip}/json/',
        })

        assert isinstance(services.geocoder, GoogleGeocodingService)
        assert services.geocoder.address_suffix == 'Gainesville, FL'
        assert isinstance(services.router, GoogleRoutingService)
        assert services.network_locator.url == 'https://ipapi.co/{ip}/json/'
