"""Notification gateway client - invoice and reminder emails"""

from typing import Dict, Any
from change_gateway.config import settings
from change_gateway.domain.models import Customer
from change_gateway.domain.exceptions import NotificationGatewayError
from change_gateway.infrastructure.clients.base import GatewayClient


class NotificationClient(GatewayClient):
    """Client for the transactional email service"""

    gateway = "notification"
    error_class = NotificationGatewayError

    def __init__(self, base_url: str | None = None, **kwargs):
        super().__init__(base_url or settings.notification_api_base, **kwargs)

    async def _send_email(self, template: str, recipient: Customer, payment_url: str, context: Dict[str, Any]) -> None:
        await self._send(
            f"send_{template}",
            "POST",
            f"/notifications/{template}",
            json={
                "to": recipient.email,
                "name": recipient.name,
                "payment_url": payment_url,
                "context": context,
            },
        )

    async def send_invoice_email(self, recipient: Customer, payment_url: str, context: Dict[str, Any]) -> None:
        """
        Email the customer a payment link for the additional cost.

        Raises:
            NotificationGatewayError: On timeout or HTTP errors
        """
        await self._send_email("invoice", recipient, payment_url, context)

    async def send_reminder_email(self, recipient: Customer, payment_url: str, context: Dict[str, Any]) -> None:
        """Re-send the existing payment link"""
        await self._send_email("reminder", recipient, payment_url, context)
