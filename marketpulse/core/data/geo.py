"""ZIP -> city/state via zippopotam.us."""
from __future__ import annotations

import re
from dataclasses import dataclass

import aiohttp
import structlog

from marketpulse.core.errors import GeocodingError

logger = structlog.get_logger()

ZIP_RE = re.compile(r"^\d{5}$")


@dataclass(frozen=True)
class ZipLocation:
    city: str | None
    state: str | None
    state_code: str | None
    zip: str


class ZipResolver:

    def __init__(
        self,
        base_url: str = "https://api.zippopotam.us",
        timeout_seconds: float = 10,
        session_factory=aiohttp.ClientSession,
    ):
        self._base_url = base_url.rstrip("/")
        self._session_factory = session_factory
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def resolve(self, zip_code: str) -> ZipLocation | None:
        """None for malformed or unknown ZIPs; GeocodingError for infrastructure failures."""
        trimmed = (zip_code or "").strip()
        if not ZIP_RE.match(trimmed):
            return None

        try:
            async with self._session_factory(timeout=self._timeout) as session:
                async with session.get(f"{self._base_url}/us/{trimmed}") as resp:
                    if resp.status == 404:
                        return None
                    if resp.status >= 400:
                        raise GeocodingError(f"geocoder returned {resp.status}")
                    data = await resp.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            raise GeocodingError(str(e) or type(e).__name__) from e

        return parse_place(data, trimmed)


def _text(value) -> str | None:
    return (value.strip() or None) if isinstance(value, str) else None


def parse_place(data, zip_code: str) -> ZipLocation | None:
    """None for any payload that is not {"places": [{...}, ...]}; missing names stay None."""
    places = data.get("places") if isinstance(data, dict) else None
    if not isinstance(places, list) or not places or not isinstance(places[0], dict):
        return None
    place = places[0]
    return ZipLocation(
        city=_text(place.get("place name")),
        state=_text(place.get("state")),
        state_code=_text(place.get("state abbreviation")),
        zip=_text(data.get("post code")) or zip_code,
    )
