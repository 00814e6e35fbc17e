"""POST /v1/webhooks/checkout - settlement callbacks from the checkout gateway"""

import logging
from datetime import datetime
from typing import Callable
from fastapi import APIRouter, Depends, HTTPException, Request

from change_gateway.api.v1.schemas import ChangeRequestResponse, CheckoutWebhook
from change_gateway.api.v1.change_requests import to_response
from change_gateway.api.dependencies import get_clock, get_controller, get_request_id
from change_gateway.services.controller import ChangeRequestController

router = APIRouter()


@router.post("/webhooks/checkout", response_model=ChangeRequestResponse)
async def checkout_webhook(
    body: CheckoutWebhook,
    request: Request,
    controller: ChangeRequestController = Depends(get_controller),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """
    Re-check payment for the request owning the session.

    The callback only says where to look; settlement is confirmed by
    querying the gateway, never taken from the payload.
    """
    record = controller.repo.get_by_session_ref(body.session_ref)
    if record is None:
        logging.warning(
            "Checkout webhook for unknown session",
            extra={"request_id": get_request_id(request), "session_ref": body.session_ref},
        )
        raise HTTPException(status_code=404, detail="Unknown checkout session")

    record = await controller.check_payment_status(record.id, actor="webhook")
    return to_response(record, clock())
