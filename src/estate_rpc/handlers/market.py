"""
Market-data handlers backed by the RentCast and Google Maps HTTP APIs.

Failures raise; the dispatcher turns them into error envelopes.
"""

import logging
from typing import Any, Optional
from urllib.parse import quote, urlencode

import httpx

from estate_rpc.errors import MarketDataError
from estate_rpc.models.actions import MarketAction, Topic
from estate_rpc.models.envelope import error_envelope, success_envelope
from estate_rpc.registry import ActionTable

logger = logging.getLogger(__name__)

DEFAULT_RENTCAST_URL = "https://api.rentcast.io/v1"
DEFAULT_MAPS_URL = "https://maps.googleapis.com/maps/api"


def clean_params(params: dict[str, Any]) -> dict[str, Any]:
    """Drop None and empty-string values."""
    return {k: v for k, v in params.items() if v is not None and v != ""}


def _params(payload: dict[str, Any]) -> dict[str, Any]:
    params = payload.get("params", payload)
    return params if isinstance(params, dict) else {}


class MarketHandlers:
    def __init__(
        self,
        rentcast_api_key: Optional[str],
        google_maps_api_key: Optional[str],
        rentcast_base_url: str = DEFAULT_RENTCAST_URL,
        maps_base_url: str = DEFAULT_MAPS_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._rentcast_key = rentcast_api_key
        self._maps_key = google_maps_api_key
        self._rentcast_url = rentcast_base_url.rstrip("/")
        self._maps_url = maps_base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            headers={"User-Agent": "estate-rpc/0.1.0", "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    def table(self) -> ActionTable:
        return ActionTable(Topic.MARKET, {
            MarketAction.SEARCH: self.search,
            MarketAction.PROPERTY_DETAILS: self.property_details,
            MarketAction.RENTAL_ESTIMATE: self.rental_estimate,
            MarketAction.MARKET_DATA: self.market_data,
            MarketAction.GEOCODE: self.geocode,
            MarketAction.GEOCODE_SHORT: self.geocode,
            MarketAction.STREET_VIEW: self.street_view,
            MarketAction.STREET_VIEW_SHORT: self.street_view,
        })

    @property
    def closed(self) -> bool:
        return self._client.is_closed

    async def close(self) -> None:
        await self._client.aclose()

    # RentCast

    async def _rentcast(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        if not self._rentcast_key:
            raise MarketDataError("RentCast API key is not configured")
        try:
            resp = await self._client.get(
                f"{self._rentcast_url}{path}", params=params, headers={"X-Api-Key": self._rentcast_key},
            )
        except httpx.HTTPError as e:
            raise MarketDataError(f"API connection error: {e}")
        if resp.status_code == 404:
            return error_envelope(_not_found(params))
        if resp.status_code >= 400:
            raise MarketDataError(
                f"RentCast API error: HTTP {resp.status_code} - {_error_detail(resp)}", resp.status_code,
            )
        try:
            data: Any = resp.json()
        except ValueError:
            logger.warning("RentCast returned a non-JSON body for %s", path)
            data = resp.text
        return success_envelope(data=data)

    async def search(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._rentcast("/properties", clean_params(_params(payload)))

    async def property_details(self, payload: dict[str, Any]) -> dict[str, Any]:
        property_id = _params(payload).get("propertyId")
        if not property_id:
            raise ValueError("propertyId required")
        return await self._rentcast(f"/properties/{quote(str(property_id), safe='')}", {})

    async def rental_estimate(self, payload: dict[str, Any]) -> dict[str, Any]:
        params = clean_params(_params(payload))
        if not params.get("address") and not (params.get("latitude") and params.get("longitude")):
            raise ValueError("address or latitude/longitude required")
        return await self._rentcast("/avm/rent/long-term", params)

    async def market_data(self, payload: dict[str, Any]) -> dict[str, Any]:
        params = clean_params(_params(payload))
        if not params.get("zipCode"):
            raise ValueError("zipCode required")
        return await self._rentcast("/markets", params)

    # Google Maps

    async def _maps(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        if not self._maps_key:
            raise MarketDataError("Google Maps API key is not configured")
        try:
            resp = await self._client.get(f"{self._maps_url}{path}", params={**params, "key": self._maps_key})
        except httpx.HTTPError as e:
            raise MarketDataError(f"API connection error: {e}")
        if resp.status_code >= 400:
            raise MarketDataError(f"Google Maps API error: HTTP {resp.status_code}", resp.status_code)
        try:
            return resp.json()
        except ValueError:
            raise MarketDataError("Invalid JSON response from Google Maps API")

    async def geocode(self, payload: dict[str, Any]) -> dict[str, Any]:
        address = _params(payload).get("address")
        if not address:
            raise ValueError("address parameter required for geocoding")
        data = await self._maps("/geocode/json", {"address": address})
        if data.get("status") not in ("OK", "ZERO_RESULTS"):
            return error_envelope(data.get("error_message") or f"Geocoding failed: {data.get('status')}")
        return success_envelope(data=data)

    async def street_view(self, payload: dict[str, Any]) -> dict[str, Any]:
        params = _params(payload)
        lat, lng = params.get("latitude"), params.get("longitude")
        if lat in (None, "") or lng in (None, ""):
            raise ValueError("latitude and longitude required for Street View")
        location = f"{lat},{lng}"
        metadata = await self._maps("/streetview/metadata", {"location": location})
        if metadata.get("status") != "OK":
            logger.info("No Street View at %s (%s)", location, metadata.get("status"))
            return error_envelope("No Street View available for this location", metadata=metadata)
        query = urlencode({
            "size": params.get("size", "600x300"),
            "location": location,
            "fov": params.get("fov", "90"),
            "heading": params.get("heading", "0"),
            "pitch": params.get("pitch", "0"),
            "key": self._maps_key,
        })
        return success_envelope(data={"url": f"{self._maps_url}/streetview?{query}", "metadata": metadata})


def _not_found(params: dict[str, Any]) -> str:
    if params.get("address"):
        return f"No data found for address '{params['address']}'"
    if params.get("zipCode"):
        return f"No data found for zipCode '{params['zipCode']}'"
    return "No data found"


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or f"HTTP {resp.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP {resp.status_code}"
