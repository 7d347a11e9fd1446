"""
Best-effort IP and geolocation lookup for session metadata.

Two tiers of interchangeable HTTP providers are tried in order, first success
wins. Provider failures are logged and skipped; resolve() always returns a
Location, with sentinel values when a tier runs dry.
"""
import ipaddress
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence

import requests

logger = logging.getLogger(__name__)

DETECTION_FAILED = "Detection failed"
UNAVAILABLE = "Unavailable"
UNKNOWN = "Unknown"

CLIENT_IP_HEADERS = (
    "X-Forwarded-For",
    "X-Real-IP",
    "CF-Connecting-IP",
    "X-Client-IP",
)


@dataclass(frozen=True)
class Location:
    ip: str
    country: str
    city: str
    region: str = ""
    country_code: str = ""

    def to_dict(self) -> dict:
        return {
            "ip": self.ip,
            "country": self.country,
            "city": self.city,
            "region": self.region,
            "country_code": self.country_code,
        }


DETECTION_FAILED_LOCATION = Location(DETECTION_FAILED, DETECTION_FAILED, DETECTION_FAILED)


@dataclass(frozen=True)
class Result:
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value) -> "Result":
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> "Result":
        return cls(error=error or "failed")


Provider = Callable[[Any, float], Result]


def first_success(providers: Iterable[Provider], arg: Any, timeout: float) -> Result:
    """
    Tries each provider once, in order, and returns the first ok Result.
    A provider that raises counts as a failure.
    """
    errors = []
    for provider in providers:
        name = getattr(provider, "name", repr(provider))
        try:
            result = provider(arg, timeout)
        except Exception as exc:
            result = Result.failure(f"{type(exc).__name__}: {exc}")
        if result.ok:
            return result
        logger.info("Provider %s failed: %s", name, result.error)
        errors.append(f"{name}: {result.error}")
    return Result.failure("; ".join(errors) or "no providers configured")


def _valid_ip(value) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return None
    return value


def client_ip_from_headers(headers: Mapping[str, str], remote_addr: Optional[str] = None) -> Optional[str]:
    """
    First publicly routable address from the usual proxy headers, then the
    socket peer. Loopback, private and "unknown" values are skipped.
    """
    candidates = []
    for header in CLIENT_IP_HEADERS:
        value = headers.get(header)
        if value:
            candidates.append(value.split(",")[0])
    if remote_addr:
        candidates.append(remote_addr)

    for candidate in candidates:
        ip = _valid_ip(candidate)
        if ip and ipaddress.ip_address(ip).is_global:
            return ip
    return None


class HttpProvider:
    """
    One GET endpoint. `url` may contain `{arg}`; `parse` turns the response
    into a value or raises ValueError/KeyError.
    """

    def __init__(self, name: str, url: str, parse: Callable[[requests.Response], Any],
                 http: Optional[requests.Session] = None):
        self.name = name
        self.url = url
        self.parse = parse
        self.http = http or requests.Session()

    def __call__(self, arg, timeout):
        url = self.url.format(arg=arg) if arg is not None else self.url
        try:
            response = self.http.get(url, timeout=timeout, headers={"Accept": "application/json, text/plain"})
            response.raise_for_status()
            return Result.success(self.parse(response))
        except requests.RequestException as exc:
            return Result.failure(f"request failed: {exc}")
        except (ValueError, KeyError, TypeError) as exc:
            return Result.failure(f"bad payload: {exc}")

    def __repr__(self):
        return f"HttpProvider({self.name!r})"


# IP discovery parsers

def parse_ip_body(response) -> str:
    """
    Accepts JSON with an `ip` field or a plain-text address.
    """
    text = (response.text or "").strip()
    ip = None
    if text.startswith("{"):
        ip = _valid_ip(response.json().get("ip"))
    else:
        ip = _valid_ip(text)
    if not ip:
        raise ValueError(f"no ip in response: {text[:64]!r}")
    return ip


# Geolocation parsers; each provider reports errors its own way

def _location(ip, country, city, region="", country_code="") -> Location:
    if not isinstance(country, str) or not country.strip():
        raise ValueError("no country name")
    city = city.strip() if isinstance(city, str) and city.strip() else UNKNOWN
    return Location(
        ip=ip,
        country=country.strip(),
        city=city,
        region=region or "",
        country_code=country_code or "",
    )


def parse_ipapi(response) -> Location:
    data = response.json()
    if data.get("error"):
        raise ValueError(data.get("reason") or "ipapi error")
    return _location(data.get("ip"), data.get("country_name"), data.get("city"),
                     data.get("region"), data.get("country_code"))


def parse_ip_api(response) -> Location:
    data = response.json()
    if data.get("status") != "success":
        raise ValueError(data.get("message") or "ip-api error")
    return _location(data.get("query"), data.get("country"), data.get("city"),
                     data.get("regionName"), data.get("countryCode"))


def parse_ipwhois(response) -> Location:
    data = response.json()
    if data.get("success") is False:
        raise ValueError(data.get("message") or "ipwho.is error")
    return _location(data.get("ip"), data.get("country"), data.get("city"),
                     data.get("region"), data.get("country_code"))


IP_PROVIDERS = {
    "ipify": ("https://api.ipify.org?format=json", parse_ip_body),
    "ipapi_ip": ("https://ipapi.co/ip/", parse_ip_body),
    "icanhazip": ("https://icanhazip.com", parse_ip_body),
}

LOOKUP_PROVIDERS = {
    "ipapi": ("https://ipapi.co/{arg}/json/", parse_ipapi),
    "ip_api": ("http://ip-api.com/json/{arg}", parse_ip_api),
    "ipwhois": ("https://ipwho.is/{arg}", parse_ipwhois),
}


def build_providers(names: Sequence[str], registry: Mapping, http=None) -> List[HttpProvider]:
    providers = []
    for name in names:
        if name not in registry:
            logger.warning("Unknown geolocation provider %r skipped", name)
            continue
        url, parse = registry[name]
        providers.append(HttpProvider(name, url, parse, http=http))
    return providers


class GeolocationResolver:
    def __init__(self, ip_providers: Sequence[Provider], lookup_providers: Sequence[Provider],
                 ip_timeout: float = 3, lookup_timeout: float = 4):
        self.ip_providers = list(ip_providers)
        self.lookup_providers = list(lookup_providers)
        self.ip_timeout = ip_timeout
        self.lookup_timeout = lookup_timeout

    @classmethod
    def from_config(cls, config: Mapping, http: Optional[requests.Session] = None) -> "GeolocationResolver":
        http = http or requests.Session()
        return cls(
            build_providers(config.get("GEO_IP_PROVIDERS", list(IP_PROVIDERS)), IP_PROVIDERS, http),
            build_providers(config.get("GEO_LOOKUP_PROVIDERS", list(LOOKUP_PROVIDERS)), LOOKUP_PROVIDERS, http),
            ip_timeout=config.get("GEO_IP_TIMEOUT_SECONDS", 3),
            lookup_timeout=config.get("GEO_LOOKUP_TIMEOUT_SECONDS", 4),
        )

    def resolve(self, client_ip: Optional[str] = None) -> Location:
        ip = _valid_ip(client_ip) if client_ip else None
        if ip is None:
            found = first_success(self.ip_providers, None, self.ip_timeout)
            ip = _valid_ip(found.value) if found.ok else None
            if ip is None:
                logger.warning("IP detection failed: %s", found.error or "invalid address")
                return DETECTION_FAILED_LOCATION

        located = first_success(self.lookup_providers, ip, self.lookup_timeout)
        if not located.ok or not isinstance(located.value, Location):
            logger.warning("Geolocation failed for %s: %s", ip, located.error)
            return Location(ip=ip, country=UNAVAILABLE, city=UNAVAILABLE)

        # providers echo the ip back; keep the one we asked about
        value = located.value
        return Location(ip=ip, country=value.country, city=value.city,
                        region=value.region, country_code=value.country_code)

    __call__ = resolve
