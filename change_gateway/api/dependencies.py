"""Dependency injection for FastAPI endpoints"""

from datetime import datetime
from typing import Callable
from fastapi import Depends, Request
from sqlalchemy.orm import Session
from change_gateway.infrastructure.clients.checkout import CheckoutClient
from change_gateway.infrastructure.clients.notifications import NotificationClient
from change_gateway.infrastructure.clients.orders import OrderStoreClient
from change_gateway.infrastructure.clients.rating import RatingClient
from change_gateway.infrastructure.database.session import get_db
from change_gateway.services.controller import ChangeRequestController
from change_gateway.utils.date_utils import utcnow


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_checkout_client() -> CheckoutClient:
    return CheckoutClient()


def get_notification_client() -> NotificationClient:
    return NotificationClient()


def get_order_store_client() -> OrderStoreClient:
    return OrderStoreClient()


def get_rating_client() -> RatingClient:
    return RatingClient()


def get_clock() -> Callable[[], datetime]:
    return utcnow


def get_controller(
    db: Session = Depends(get_db),
    checkout: CheckoutClient = Depends(get_checkout_client),
    notifications: NotificationClient = Depends(get_notification_client),
    orders: OrderStoreClient = Depends(get_order_store_client),
    rating: RatingClient = Depends(get_rating_client),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> ChangeRequestController:
    """Provide a controller bound to the request's DB session"""
    return ChangeRequestController(db, checkout, notifications, orders, rating, clock=clock)
