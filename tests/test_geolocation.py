import itertools

import pytest
import requests

from utils.geolocation import (
    DETECTION_FAILED,
    UNAVAILABLE,
    UNKNOWN,
    GeolocationResolver,
    HttpProvider,
    IP_PROVIDERS,
    LOOKUP_PROVIDERS,
    Location,
    Result,
    build_providers,
    client_ip_from_headers,
    first_success,
    parse_ip_body,
)


class FakeResponse:
    def __init__(self, status_code=200, text="", json_data=None):
        self.status_code = status_code
        self.text = text
        self._json = json_data

    def json(self):
        if self._json is None:
            raise ValueError("not json")
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeHttp:
    """Maps url prefixes to responses or exceptions; records every call."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def get(self, url, timeout=None, headers=None):
        self.calls.append((url, timeout))
        for prefix, outcome in self.routes.items():
            if url.startswith(prefix):
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        raise requests.ConnectionError(f"no route for {url}")


def _ip_provider(i, ok, calls):
    def provider(arg, timeout):
        calls.append(("ip", i, timeout))
        if ok:
            return Result.success(f"8.8.4.{i}")
        if i % 2:
            raise requests.Timeout("timed out")
        return Result.failure("http 500")
    provider.name = f"ip{i}"
    return provider


def _geo_provider(i, ok, calls):
    def provider(ip, timeout):
        calls.append(("geo", i, timeout))
        if ok:
            return Result.success(Location(ip, f"Country{i}", f"City{i}"))
        if i % 2:
            raise ValueError("bad payload")
        return Result.failure("quota exceeded")
    provider.name = f"geo{i}"
    return provider


@pytest.mark.parametrize("flags", list(itertools.product([True, False], repeat=6)))
def test_resolve_is_total_for_every_provider_combination(flags):
    ip_flags, geo_flags = flags[:3], flags[3:]
    calls = []
    resolver = GeolocationResolver(
        [_ip_provider(i, ok, calls) for i, ok in enumerate(ip_flags)],
        [_geo_provider(i, ok, calls) for i, ok in enumerate(geo_flags)],
    )

    location = resolver.resolve()

    assert location.ip and location.country and location.city
    if not any(ip_flags):
        assert location == Location(DETECTION_FAILED, DETECTION_FAILED, DETECTION_FAILED)
        assert all(kind == "ip" for kind, _, _ in calls)
        return

    first_ip = ip_flags.index(True)
    assert location.ip == f"8.8.4.{first_ip}"
    if not any(geo_flags):
        assert (location.country, location.city) == (UNAVAILABLE, UNAVAILABLE)
    else:
        first_geo = geo_flags.index(True)
        assert (location.country, location.city) == (f"Country{first_geo}", f"City{first_geo}")


def test_providers_are_tried_in_order_and_stop_at_first_success():
    calls = []
    resolver = GeolocationResolver(
        [_ip_provider(0, False, calls), _ip_provider(1, True, calls), _ip_provider(2, True, calls)],
        [_geo_provider(0, True, calls), _geo_provider(1, True, calls)],
        ip_timeout=3,
        lookup_timeout=4,
    )
    resolver.resolve()
    assert calls == [("ip", 0, 3), ("ip", 1, 3), ("geo", 0, 4)]


def test_client_ip_hint_skips_ip_discovery():
    calls = []
    resolver = GeolocationResolver([_ip_provider(0, True, calls)], [_geo_provider(0, True, calls)])
    location = resolver.resolve("1.1.1.1")
    assert location.ip == "1.1.1.1"
    assert [kind for kind, _, _ in calls] == ["geo"]


def test_first_success_reports_all_errors():
    result = first_success([_ip_provider(0, False, []), _ip_provider(1, False, [])], None, 1)
    assert not result.ok
    assert "ip0" in result.error and "ip1" in result.error


def test_first_success_without_providers_fails():
    assert not first_success([], None, 1).ok


def test_http_chain_with_real_parsers():
    http = FakeHttp({
        "https://api.ipify.org": requests.Timeout("slow"),
        "https://ipapi.co/ip/": FakeResponse(text="8.8.8.8\n"),
        "https://ipapi.co/8.8.8.8/json/": FakeResponse(json_data={"error": True, "reason": "RateLimited"}),
        "http://ip-api.com/json/8.8.8.8": FakeResponse(json_data={
            "status": "success", "country": "United States", "city": "Ashburn",
            "regionName": "Virginia", "countryCode": "US", "query": "8.8.8.8",
        }),
    })
    resolver = GeolocationResolver.from_config({}, http=http)

    location = resolver.resolve()

    assert location == Location("8.8.8.8", "United States", "Ashburn", "Virginia", "US")
    assert [timeout for _, timeout in http.calls] == [3, 3, 4, 4]


def test_http_provider_failures_fall_through_to_sentinels():
    http = FakeHttp({
        "https://api.ipify.org": FakeResponse(json_data={"ip": "1.1.1.1"}, text='{"ip": "1.1.1.1"}'),
        "https://ipapi.co/1.1.1.1/json/": FakeResponse(status_code=429),
        "http://ip-api.com/json/1.1.1.1": FakeResponse(json_data={"status": "fail", "message": "reserved range"}),
        "https://ipwho.is/1.1.1.1": FakeResponse(text="<html>oops</html>"),
    })
    location = GeolocationResolver.from_config({}, http=http).resolve()
    assert location == Location("1.1.1.1", UNAVAILABLE, UNAVAILABLE)


def test_missing_city_becomes_unknown():
    http = FakeHttp({
        "https://ipwho.is/9.9.9.9": FakeResponse(json_data={"success": True, "country": "Switzerland", "city": ""}),
    })
    resolver = GeolocationResolver.from_config({"GEO_LOOKUP_PROVIDERS": ["ipwhois"]}, http=http)
    location = resolver.resolve("9.9.9.9")
    assert (location.country, location.city) == ("Switzerland", UNKNOWN)


def test_parse_ip_body_rejects_garbage():
    assert parse_ip_body(FakeResponse(text=" 2001:4860:4860::8888 ")) == "2001:4860:4860::8888"
    with pytest.raises(ValueError):
        parse_ip_body(FakeResponse(text="<html>blocked</html>"))
    with pytest.raises(ValueError):
        parse_ip_body(FakeResponse(text='{"ip": "nope"}', json_data={"ip": "nope"}))


def test_unknown_provider_names_are_skipped():
    providers = build_providers(["ipify", "does-not-exist"], IP_PROVIDERS)
    assert [p.name for p in providers] == ["ipify"]
    assert set(LOOKUP_PROVIDERS) == {"ipapi", "ip_api", "ipwhois"}


def test_http_provider_formats_argument_into_url():
    http = FakeHttp({"https://ipwho.is/": FakeResponse(json_data={"success": True, "country": "Chile", "city": "Santiago"})})
    provider = HttpProvider("ipwhois", "https://ipwho.is/{arg}", LOOKUP_PROVIDERS["ipwhois"][1], http=http)
    result = provider("8.8.8.8", 2)
    assert result.ok
    assert http.calls == [("https://ipwho.is/8.8.8.8", 2)]


@pytest.mark.parametrize("headers,remote,expected", [
    ({"X-Forwarded-For": "8.8.8.8, 10.0.0.1"}, "127.0.0.1", "8.8.8.8"),
    ({"X-Forwarded-For": "unknown", "X-Real-IP": "1.1.1.1"}, None, "1.1.1.1"),
    ({"CF-Connecting-IP": "127.0.0.1"}, "192.168.1.10", None),
    ({}, "9.9.9.9", "9.9.9.9"),
    ({}, None, None),
])
def test_client_ip_from_headers(headers, remote, expected):
    assert client_ip_from_headers(headers, remote) == expected
