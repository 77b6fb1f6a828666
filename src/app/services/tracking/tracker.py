"""
Shipment Tracker - DB Schenker public tracking lookups

Flow for one reference:
    1. search   GET {base}/shipments?query=<reference>            (required)
    2. details  GET {base}/shipments/land/LandStt:SE:<stt>        (optional)
       trip     GET {base}/shipments/land/LandStt:SE:<stt>/trip   (optional)

Details and trip run concurrently; a 404 on either leaves that part empty.
A block on either call wins over any other failure, which otherwise
propagates once both calls finish. All calls share the reference as the
blocked-record identity, so a reference blocked by the origin is not
retried for the blocked TTL.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from ...schemas.tracking import BlockedPayload, TrackingLookup
from ..pow_fetch import ABSENT, AdaptiveFetcher, BlockedError, FetcherConfig, ParseError

if TYPE_CHECKING:
    from ...core.config import Settings

logger = logging.getLogger(__name__)

LAND_STT_PREFIX = "LandStt:SE:"


class ShipmentTracker:
    """Tracks shipments by reference through an AdaptiveFetcher."""

    def __init__(self, fetcher: AdaptiveFetcher, base_url: str) -> None:
        self.fetcher = fetcher
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ShipmentTracker":
        fetcher = AdaptiveFetcher(FetcherConfig.from_settings(settings))
        return cls(fetcher, settings.TRACKING_BASE_URL)

    def search_url(self, reference: str) -> str:
        return f"{self.base_url}/shipments?query={quote(reference, safe='')}"

    def details_url(self, stt: str) -> str:
        return f"{self.base_url}/shipments/land/{quote(LAND_STT_PREFIX + stt, safe='')}"

    def trip_url(self, stt: str) -> str:
        return f"{self.details_url(stt)}/trip"

    async def track(self, reference: str) -> TrackingLookup | BlockedPayload:
        """
        Look up a shipment and gather its details and trip documents.

        Args:
            reference: Tracking reference number

        Returns:
            TrackingLookup with raw JSON, or the BlockedPayload when the origin
            blocks this reference

        Raises:
            ParseError: A response body does not have the expected JSON shape
            PowFetchException: Any non-blocked failure (rate limit, rejected
                solution, server error, ...)
        """
        search_url = self.search_url(reference)
        try:
            search = await self.fetcher.fetch_json(search_url, identity=reference)
        except BlockedError as e:
            if e.payload is None:
                raise
            return e.payload
        if isinstance(search, BlockedPayload):
            return search

        if not isinstance(search, dict):
            raise ParseError("Search response is not a JSON object", url=search_url)
        results = search.get("result")
        if not results:
            logger.info(f"No shipment found for reference {reference}")
            return TrackingLookup(reference=reference)
        if not isinstance(results, list) or not isinstance(results[0], dict):
            raise ParseError("Search result is not a list of shipment objects", url=search_url)

        top = results[0]
        stt = top.get("stt")
        if not stt:
            logger.warning(f"Shipment found for {reference} but missing STT identifier")
            return TrackingLookup(reference=reference, shipment=top)

        details_url, trip_url = self.details_url(str(stt)), self.trip_url(str(stt))
        details, trip = await asyncio.gather(
            self.fetcher.fetch_json(details_url, identity=reference, optional=True),
            self.fetcher.fetch_json(trip_url, identity=reference, optional=True),
            return_exceptions=True,
        )

        blocked = _blocked_payload(details, trip)
        if blocked is not None:
            return blocked

        for part in (details, trip):
            if isinstance(part, BaseException):
                raise part

        return TrackingLookup(
            reference=reference,
            shipment=top,
            details=_document(details, details_url),
            trip=_document(trip, trip_url),
        )


def _blocked_payload(*parts: Any) -> BlockedPayload | None:
    """First blocked outcome among gathered results, raised or returned."""
    for part in parts:
        if isinstance(part, BlockedPayload):
            return part
        if isinstance(part, BlockedError) and part.payload is not None:
            return part.payload
    return None


def _document(part: Any, url: str) -> dict[str, Any] | None:
    if part is ABSENT:
        return None
    if not isinstance(part, dict):
        raise ParseError("Response is not a JSON object", url=url)
    return part
