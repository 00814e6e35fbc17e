"""Carrier rating client - fetches raw quote payloads"""

from typing import Any
from change_gateway.config import settings
from change_gateway.domain.models import AddressSnapshot, PackageSnapshot
from change_gateway.domain.exceptions import RatingGatewayError
from change_gateway.infrastructure.clients.base import GatewayClient


class RatingClient(GatewayClient):
    """Client for the carrier rating proxy; the payload shape is the carrier's"""

    gateway = "carrier_rating"
    error_class = RatingGatewayError

    def __init__(self, base_url: str | None = None, **kwargs):
        super().__init__(base_url or settings.carrier_rating_api_base, **kwargs)

    async def get_rates(self, order_ref: str, address: AddressSnapshot, package: PackageSnapshot) -> Any:
        """Quote the shipment; rating has no side effects so it is retried"""
        response = await self._send_with_retry(
            "get_rates",
            "POST",
            "/rates",
            json={
                "order_ref": order_ref,
                "ship_to": address.to_dict(),
                "package": package.to_dict(),
            },
        )
        return self._json(response, "get_rates")
