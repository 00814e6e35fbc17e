"""Checkout gateway client - payable sessions for additional charges"""

from typing import Optional
from change_gateway.config import settings
from change_gateway.domain.models import CheckoutSession, SessionStatus
from change_gateway.domain.exceptions import CheckoutGatewayError
from change_gateway.infrastructure.clients.base import GatewayClient


class CheckoutClient(GatewayClient):
    """Client for the external checkout/payment-link service"""

    gateway = "checkout"
    error_class = CheckoutGatewayError

    def __init__(self, base_url: str | None = None, **kwargs):
        super().__init__(base_url or settings.checkout_api_base, **kwargs)

    async def create_session(
        self,
        amount_cents: int,
        order_ref: str,
        description: str,
        customer_email: Optional[str] = None,
    ) -> CheckoutSession:
        """
        Create a payable session. Never retried: a retry after an ambiguous
        failure could leave two live sessions for one charge.

        Raises:
            CheckoutGatewayError: On timeout, HTTP errors, or invalid response
        """
        response = await self._send(
            "create_session",
            "POST",
            "/checkout/sessions",
            json={
                "amount_cents": amount_cents,
                "currency": settings.currency,
                "order_ref": order_ref,
                "description": description,
                "customer_email": customer_email,
            },
        )
        data = self._json(response, "create_session")
        try:
            return CheckoutSession(
                session_ref=data["session_ref"],
                payment_url=data["payment_url"],
                session_id=data.get("session_id"),
            )
        except (KeyError, TypeError) as e:
            raise CheckoutGatewayError(f"Invalid session data from checkout: {e}") from e

    async def get_session_status(self, session_ref: str) -> SessionStatus:
        """Read settlement state, retried with backoff"""
        response = await self._send_with_retry("get_session_status", "GET", f"/checkout/sessions/{session_ref}")
        data = self._json(response, "get_session_status")
        try:
            return SessionStatus(
                settled=bool(data["settled"]),
                settled_order_ref=data.get("settled_order_ref"),
            )
        except (KeyError, TypeError) as e:
            raise CheckoutGatewayError(f"Invalid session status from checkout: {e}") from e

    async def cancel_session(self, session_ref: str) -> None:
        await self._send("cancel_session", "POST", f"/checkout/sessions/{session_ref}/cancel")
