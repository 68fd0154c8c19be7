"""
Tests for the geocode resolver and its providers.

Providers are served by httpx.MockTransport; no network access.
"""

import asyncio

import httpx
import pytest

from conftest import NoSleep, json_response, pdok_doc
from services.location.cache import GeocodeCache
from services.location.geocoding import GeocodeResolver, RateLimiter, query_nominatim, query_pdok

PDOK = "api.pdok.nl"
NOMINATIM = "nominatim.openstreetmap.org"


def run(coro):
    return asyncio.run(coro)


class TestPostalCodes:

    def test_pdok_result_is_returned_and_cached(self, resolver, providers):
        providers.pdok = lambda r: json_response(pdok_doc(4.8945, 52.3731, doc_type="postcode", name="1011AB"))

        first = run(resolver.geocode("1011AB"))
        second = run(resolver.geocode("1011 ab"))

        assert (first.lat, first.lng) == (52.3731, 4.8945)
        assert first.source == "pdok"
        assert first.accuracy == "approximate"
        assert second.source == "cache"
        assert providers.calls_to(PDOK) == 1

    def test_falls_back_to_lookup_table(self, resolver, providers):
        result = run(resolver.geocode_postal_code("1011AB"))

        assert result.source == "lookup_table"
        assert result.accuracy == "region"
        assert providers.calls_to(NOMINATIM) == 0

    def test_spacing_variants_resolve_to_same_region(self, providers, clock):
        # Separate resolvers so the second call cannot be served from cache
        def fresh():
            client = httpx.AsyncClient(transport=httpx.MockTransport(providers))
            return GeocodeResolver(GeocodeCache(clock=clock), client=client, rate_limiter=RateLimiter(0))

        a = run(fresh().geocode("1011AB"))
        b = run(fresh().geocode("1011 AB"))

        assert (a.lat, a.lng, a.accuracy) == (b.lat, b.lng, b.accuracy)

    def test_lookup_result_is_cached(self, resolver, providers):
        run(resolver.geocode("3011AA"))
        cached = run(resolver.geocode("3011AA"))

        assert cached.source == "cache"
        assert providers.calls_to(PDOK) == 1

    def test_unknown_prefix_interpolates(self, resolver):
        result = run(resolver.geocode_postal_code("4600"))
        assert result.accuracy == "approximate"

    def test_unresolvable_code_not_cached(self, resolver):
        assert run(resolver.geocode_postal_code("0999")) is None
        assert resolver.cache_stats()["size"] == 0


class TestAddresses:

    def test_pdok_first(self, resolver, providers):
        providers.pdok = lambda r: json_response(pdok_doc(4.8936, 52.3765))

        result = run(resolver.geocode("Damrak 1, Amsterdam"))

        assert result.source == "pdok"
        assert result.accuracy == "exact"
        assert result.address == "Damrak 1, Amsterdam"
        assert providers.calls_to(NOMINATIM) == 0

    def test_falls_back_to_nominatim(self, resolver, providers):
        providers.nominatim = lambda r: json_response([{
            "lat": "52.3791", "lon": "4.9003", "type": "building", "display_name": "Centraal Station",
        }])

        result = run(resolver.geocode("Stationsplein 1, Amsterdam"))

        assert result.source == "nominatim"
        assert result.accuracy == "exact"
        assert (result.lat, result.lng) == (52.3791, 4.9003)
        assert run(resolver.geocode("stationsplein 1, amsterdam")).source == "cache"

    def test_no_lookup_table_for_addresses(self, resolver, providers):
        assert run(resolver.geocode("Nowhere street 1")) is None
        assert providers.calls_to(PDOK) == 1
        assert providers.calls_to(NOMINATIM) == 1
        assert resolver.cache_stats()["size"] == 0

    def test_nominatim_query_is_country_filtered(self, resolver, providers):
        run(resolver.geocode("Damrak 1"))
        request = [r for r in providers.requests if r.url.host == NOMINATIM][0]

        assert request.url.params["q"] == "Damrak 1, Netherlands"
        assert request.url.params["countrycodes"] == "nl"
        assert request.headers["User-Agent"].startswith("Fleetsheet/")


class TestInvalidInput:

    @pytest.mark.parametrize("query", ["", "   ", None])
    def test_empty_input_short_circuits(self, resolver, providers, query):
        assert run(resolver.geocode(query)) is None
        assert run(resolver.geocode_postal_code(query)) is None
        assert run(resolver.geocode_address(query)) is None
        assert providers.requests == []
        assert resolver.cache_stats()["misses"] == 0

    @pytest.mark.parametrize("query", ["hello world", "12345", "AB1011", "1011 ABC"])
    def test_non_postal_input_short_circuits(self, resolver, providers, query):
        assert run(resolver.geocode_postal_code(query)) is None
        assert providers.requests == []
        assert resolver.cache_stats()["misses"] == 0


class TestProviderFailures:

    def _client(self, handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    def test_timeout_returns_none(self, caplog):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        assert run(query_pdok(self._client(handler), "1011AB")) is None
        assert "timeout" in caplog.text

    def test_connection_error_returns_none(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert run(query_nominatim(self._client(handler), "Damrak 1")) is None

    def test_server_error_returns_none(self, caplog):
        assert run(query_pdok(self._client(lambda r: httpx.Response(500)), "1011AB")) is None
        assert "500" in caplog.text

    def test_non_json_body_returns_none(self):
        handler = lambda r: httpx.Response(200, content=b"<html>oops</html>")
        assert run(query_pdok(self._client(handler), "1011AB")) is None

    @pytest.mark.parametrize("payload", [
        [],
        {"response": {"docs": []}},
        {"response": {"docs": [{"centroide_ll": "garbage"}]}},
        {"response": {"docs": ["not-a-dict"]}},
    ])
    def test_malformed_pdok_payloads(self, payload):
        assert run(query_pdok(self._client(lambda r: json_response(payload)), "x")) is None

    @pytest.mark.parametrize("payload", [
        {"error": "nope"},
        [],
        [{"lat": "abc", "lon": "4.9"}],
        [{"display_name": "no coordinates"}],
    ])
    def test_malformed_nominatim_payloads(self, payload):
        assert run(query_nominatim(self._client(lambda r: json_response(payload)), "x")) is None

    def test_chain_degrades_past_failing_pdok(self, resolver, providers):
        providers.pdok = lambda r: httpx.Response(502)
        providers.nominatim = lambda r: json_response([{"lat": "52.0", "lon": "5.0", "type": "city"}])

        result = run(resolver.geocode("Utrecht"))

        assert result.source == "nominatim"
        assert result.accuracy == "approximate"


class TestAccuracyMapping:

    @pytest.mark.parametrize("doc_type, expected", [
        ("adres", "exact"),
        ("postcode", "approximate"),
        ("woonplaats", "approximate"),
        ("provincie", "region"),
    ])
    def test_pdok(self, doc_type, expected):
        client = httpx.AsyncClient(transport=httpx.MockTransport(
            lambda r: json_response(pdok_doc(5.0, 52.0, doc_type=doc_type))))
        assert run(query_pdok(client, "x")).accuracy == expected

    @pytest.mark.parametrize("place_type, expected", [
        ("house", "exact"),
        ("postcode", "approximate"),
        ("town", "approximate"),
        ("administrative", "region"),
        (None, "region"),
    ])
    def test_nominatim(self, place_type, expected):
        client = httpx.AsyncClient(transport=httpx.MockTransport(
            lambda r: json_response([{"lat": "52", "lon": "5", "type": place_type}])))
        assert run(query_nominatim(client, "x")).accuracy == expected


class TestRateLimiter:

    def test_spaces_calls(self):
        now = [100.0]
        sleep = NoSleep()
        limiter = RateLimiter(1.0, clock=lambda: now[0], sleep=sleep)

        async def scenario():
            await limiter.wait()
            now[0] += 0.25
            await limiter.wait()
            now[0] += 5
            await limiter.wait()

        run(scenario())

        assert sleep.sleeps == [pytest.approx(0.75)]

    def test_first_call_never_waits(self):
        sleep = NoSleep()
        run(RateLimiter(1.0, clock=lambda: 0.0, sleep=sleep).wait())
        assert sleep.sleeps == []

    def test_resolver_throttles_nominatim_only(self, providers, clock):
        sleep = NoSleep()
        limiter = RateLimiter(1.0, clock=lambda: 0.0, sleep=sleep)
        client = httpx.AsyncClient(transport=httpx.MockTransport(providers))
        resolver = GeocodeResolver(GeocodeCache(clock=clock), client=client, rate_limiter=limiter)

        async def scenario():
            await resolver.geocode("Address one")
            await resolver.geocode("Address two")
            await resolver.geocode("1011AB")
            await resolver.geocode("2011AB")

        run(scenario())

        assert providers.calls_to(NOMINATIM) == 2
        assert len(sleep.sleeps) == 1


class TestResolverSurface:

    def test_distance_reexports(self, resolver):
        a = run(resolver.geocode("1011AB"))
        b = run(resolver.geocode("3011AB"))
        assert resolver.distance(a, b) == pytest.approx(57_000, abs=2_000)
        assert not resolver.within_radius(a, b, 10_000)

    def test_cache_maintenance(self, resolver, clock):
        run(resolver.geocode("1011AB"))
        clock.advance(24 * 60 * 60)

        assert resolver.cleanup_cache() == 1
        resolver.clear_cache()
        assert resolver.cache_stats()["size"] == 0

    def test_aclose_leaves_injected_client_open(self, resolver):
        run(resolver.aclose())
        assert not resolver.client.is_closed
