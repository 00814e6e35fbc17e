"""Order store HTTP client - current order snapshots and shipping block"""

from change_gateway.config import settings
from change_gateway.domain.models import OrderRecord, Customer, AddressSnapshot, PackageSnapshot
from change_gateway.domain.exceptions import OrderNotFound, OrderStoreError
from change_gateway.infrastructure.clients.base import GatewayClient, is_not_found


class OrderStoreClient(GatewayClient):
    """Client for the external order store"""

    gateway = "order_store"
    error_class = OrderStoreError

    def __init__(self, base_url: str | None = None, **kwargs):
        super().__init__(base_url or settings.order_store_api_base, **kwargs)

    async def get_order(self, order_ref: str) -> OrderRecord:
        """
        Fetch the order's current address, package and block flag.

        Raises:
            OrderNotFound: The order store answered 404
            OrderStoreError: On timeout, other HTTP errors, or invalid response
        """
        try:
            response = await self._send_with_retry("get_order", "GET", f"/orders/{order_ref}")
        except OrderStoreError as e:
            if is_not_found(e.__cause__):
                raise OrderNotFound(order_ref) from e
            raise
        data = self._json(response, "get_order")

        try:
            return OrderRecord(
                order_ref=data["order_ref"],
                customer=Customer(name=data["customer"]["name"], email=data["customer"]["email"]),
                address=AddressSnapshot.from_dict(data["address"]),
                package=PackageSnapshot.from_dict(data["package"]),
                shipping_blocked=bool(data.get("shipping_blocked", False)),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise OrderStoreError(f"Invalid order data from order store: {e}") from e

    async def set_address(self, order_ref: str, address: AddressSnapshot) -> None:
        await self._send("set_address", "PUT", f"/orders/{order_ref}/address", json=address.to_dict())

    async def set_package(self, order_ref: str, package: PackageSnapshot) -> None:
        await self._send("set_package", "PUT", f"/orders/{order_ref}/package", json=package.to_dict())

    async def set_shipping_blocked(self, order_ref: str, blocked: bool) -> None:
        await self._send("set_shipping_blocked", "PUT", f"/orders/{order_ref}/shipping-block", json={"blocked": blocked})
