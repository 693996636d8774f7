"""
observation_source.py — Async observation backends with bounded fetches.

Every fetch crosses a network boundary and is therefore the only place the
engine suspends. Rules for callers:

    1. Each fetch is bounded by a timeout (default 3 s).
    2. On timeout the in-flight request is cancelled.
    3. A failed or timed-out fetch means "no data for this point". It is
       never fatal: grids fall back to climatology, point scoring falls back
       to the last known observation.

Backends:
    OpenMeteoObservationSource   live Open-Meteo API via httpx
    InMemoryObservationSource    fixed observations (tests, replay)
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import timedelta
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import httpx

from climarisk.core.config import settings
from climarisk.core.errors import ObservationError, ObservationFetchError
from climarisk.ingestion.observation import EnvironmentalObservation, from_open_meteo

logger = logging.getLogger(__name__)

CURRENT_PARAMS = (
    "temperature_2m",
    "relative_humidity_2m",
    "pressure_msl",
    "wind_speed_10m",
)


class ObservationSource(Protocol):
    """Anything that can produce an observation for a point."""

    name: str

    async def fetch(self, lat: float, lng: float) -> EnvironmentalObservation:
        """Fetch the current observation at (lat, lng)."""
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Backends
# ═══════════════════════════════════════════════════════════════════════════

class OpenMeteoObservationSource:
    """
    Open-Meteo forecast API backend (free, no API key).

    The HTTP client is created lazily and must be closed with ``close()``.
    """

    name = "open-meteo"

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.OPEN_METEO_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.OBSERVATION_FETCH_TIMEOUT
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def fetch(self, lat: float, lng: float) -> EnvironmentalObservation:
        params = {
            "latitude": lat,
            "longitude": lng,
            "current": ",".join(CURRENT_PARAMS),
            "daily": "precipitation_sum",
            "forecast_days": 3,
            "wind_speed_unit": "kmh",
            "timezone": "UTC",
        }
        client = await self._get_client()

        try:
            response = await client.get(f"{self.base_url}/forecast", params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise ObservationFetchError(
                self.name, f"HTTP {e.response.status_code}", lat=lat, lng=lng
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ObservationFetchError(self.name, str(e), lat=lat, lng=lng) from e

        try:
            return from_open_meteo(data, lat=lat, lng=lng)
        except ObservationError as e:
            raise ObservationFetchError(
                self.name, f"unusable payload: {e.message}", lat=lat, lng=lng
            ) from e


class InMemoryObservationSource:
    """
    Serves fixed observations keyed by rounded location.

    ``fallback`` (if given) answers any point without its own entry;
    otherwise unknown points raise ObservationFetchError.
    """

    name = "in-memory"

    def __init__(
        self,
        observations: Optional[Sequence[EnvironmentalObservation]] = None,
        *,
        fallback: Optional[EnvironmentalObservation] = None,
        delay_seconds: float = 0.0,
    ):
        self._by_key: Dict[str, EnvironmentalObservation] = {}
        for obs in observations or ():
            self._by_key[_cache_key(obs.lat, obs.lng)] = obs
        self.fallback = fallback
        self.delay_seconds = delay_seconds
        self.calls: List[Tuple[float, float]] = []

    async def fetch(self, lat: float, lng: float) -> EnvironmentalObservation:
        self.calls.append((lat, lng))
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        obs = self._by_key.get(_cache_key(lat, lng))
        if obs is not None:
            return obs
        if self.fallback is not None:
            return self.fallback.replace(lat=lat, lng=lng)
        raise ObservationFetchError(self.name, "no observation stored", lat=lat, lng=lng)


# ═══════════════════════════════════════════════════════════════════════════
# Bounded fetch
# ═══════════════════════════════════════════════════════════════════════════

async def fetch_with_timeout(
    source: ObservationSource,
    lat: float,
    lng: float,
    timeout: Optional[float] = None,
) -> Optional[EnvironmentalObservation]:
    """
    Fetch one observation, bounded by ``timeout`` seconds.

    Returns None on timeout or any source failure; the pending request is
    cancelled by ``asyncio.wait_for`` when the deadline passes.
    """
    timeout = settings.OBSERVATION_FETCH_TIMEOUT if timeout is None else timeout
    started = time.perf_counter()
    try:
        return await asyncio.wait_for(source.fetch(lat, lng), timeout)
    except asyncio.TimeoutError:
        logger.warning(
            "Observation fetch from %s timed out after %.1fs at (%.2f, %.2f)",
            getattr(source, "name", "source"), timeout, lat, lng,
            extra={"lat": lat, "lng": lng,
                   "duration_ms": round((time.perf_counter() - started) * 1000)},
        )
    except ObservationFetchError as e:
        logger.warning("%s", e.message, extra={"lat": lat, "lng": lng})
    except Exception as e:
        logger.warning(
            "Observation fetch from %s failed at (%.2f, %.2f): %s",
            getattr(source, "name", "source"), lat, lng, e,
            extra={"lat": lat, "lng": lng},
        )
    return None


def _cache_key(lat: float, lng: float) -> str:
    # Round to ~1km precision
    return f"{lat:.2f},{lng:.2f}"


class LastKnownObservationCache:
    """Most recent successful observation per location."""

    def __init__(self, max_age: timedelta = timedelta(hours=6)):
        self.max_age = max_age
        self._entries: Dict[str, EnvironmentalObservation] = {}

    def put(self, observation: EnvironmentalObservation) -> None:
        self._entries[_cache_key(observation.lat, observation.lng)] = observation

    def get(self, lat: float, lng: float, now=None) -> Optional[EnvironmentalObservation]:
        obs = self._entries.get(_cache_key(lat, lng))
        if obs is None:
            return None
        if now is not None and now - obs.timestamp > self.max_age:
            return None
        return obs

    def __len__(self) -> int:
        return len(self._entries)


class ObservationSampler:
    """
    Fan-out sampler over an ObservationSource.

    Fetches run concurrently; each is bounded independently. Successful
    observations refresh the last-known cache.
    """

    def __init__(
        self,
        source: ObservationSource,
        *,
        timeout: Optional[float] = None,
        cache: Optional[LastKnownObservationCache] = None,
    ):
        self.source = source
        self.timeout = settings.OBSERVATION_FETCH_TIMEOUT if timeout is None else timeout
        self.cache = cache if cache is not None else LastKnownObservationCache()

    async def sample(
        self,
        lat: float,
        lng: float,
        *,
        use_last_known: bool = True,
        now=None,
    ) -> Optional[EnvironmentalObservation]:
        obs = await fetch_with_timeout(self.source, lat, lng, self.timeout)
        if obs is not None:
            self.cache.put(obs)
            return obs
        if use_last_known:
            cached = self.cache.get(lat, lng, now=now)
            if cached is not None:
                logger.info(
                    "Using last known observation for (%.2f, %.2f) from %s",
                    lat, lng, cached.timestamp.isoformat(),
                )
                return cached.replace(source="last-known")
        return None

    async def sample_many(
        self,
        points: Sequence[Tuple[float, float]],
        *,
        use_last_known: bool = False,
        now=None,
    ) -> List[Optional[EnvironmentalObservation]]:
        """Sample every point concurrently; results keep input order."""
        return list(await asyncio.gather(*(
            self.sample(lat, lng, use_last_known=use_last_known, now=now)
            for lat, lng in points
        )))
