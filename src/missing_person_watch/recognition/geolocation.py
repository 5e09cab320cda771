"""Best-effort position lookup for detection events."""

import logging
from datetime import UTC, datetime

import httpx

from missing_person_watch.config import GEOLOCATION_TIMEOUT, GEOLOCATION_URL
from missing_person_watch.models import GeoLocation

logger = logging.getLogger(__name__)


class HttpGeolocator:
    """Query a JSON geolocation endpoint once per call, without retries.

    The endpoint must return ``latitude``/``longitude`` (or ``lat``/``lon``)
    and may include ``accuracy`` in metres. Any failure yields None.
    """

    def __init__(
        self,
        url: str | None = None,
        timeout: float = GEOLOCATION_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url or GEOLOCATION_URL
        if not self.url:
            raise ValueError("Geolocation URL is required. Set GEOLOCATION_URL in .env file.")
        self.timeout = timeout
        self.transport = transport

    async def locate(self) -> GeoLocation | None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.get(self.url)
                resp.raise_for_status()
            data = resp.json()
            if not isinstance(data, dict):
                logger.warning("Unexpected geolocation response: %r", data)
                return None
            latitude = data.get("latitude", data.get("lat"))
            longitude = data.get("longitude", data.get("lon"))
            if latitude is None or longitude is None:
                logger.warning("Geolocation response has no coordinates: %s", data)
                return None
            accuracy = data.get("accuracy")
            return GeoLocation(
                latitude=float(latitude),
                longitude=float(longitude),
                accuracy=float(accuracy) if accuracy is not None else None,
                timestamp=datetime.now(UTC),
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Location lookup failed: %s", exc)
            return None
