"""Background workers: payment reconciliation poller and expiration sweeper"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
from sqlalchemy.orm import Session

from change_gateway.domain.exceptions import DomainException, CheckoutGatewayError
from change_gateway.domain.models import ChangeStatus
from change_gateway.infrastructure.database.repositories import ChangeRequestRepository
from change_gateway.infrastructure.database.session import SessionLocal, worker_session
from change_gateway.services.controller import ChangeRequestController
from change_gateway.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

ControllerFactory = Callable[[Session], ChangeRequestController]


@dataclass
class PollResult:
    checked: int = 0
    settled: int = 0
    errors: int = 0


class PeriodicWorker:
    """
    Runs run_once() every interval until stopped.

    Holds no state of its own; each run opens a fresh session and any
    number of workers can run side by side, relying on the controller's
    compare-and-swap.
    """

    name = "worker"

    def __init__(
        self,
        controller_factory: ControllerFactory,
        interval_seconds: int,
        batch_size: int = 100,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got: {interval_seconds}")
        self.controller_factory = controller_factory
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.session_factory = session_factory
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self):
        raise NotImplementedError

    async def start(self) -> None:
        if self.is_running:
            logger.warning(f"{self.name} already running, ignoring start request")
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"{self.name} started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"{self.name} stopped")

    async def _run_loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception as e:
                # A failed run must not kill the loop; the next tick retries
                logger.error(f"{self.name} run failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval_seconds)


class PaymentPoller(PeriodicWorker):
    """Asks the checkout gateway whether invoiced requests have been paid"""

    name = "payment-poller"

    async def run_once(self) -> PollResult:
        """
        Probe every invoiced request once, batch_size rows per page.

        Gateway errors are logged per request and the sweep continues.
        """
        result = PollResult()
        with worker_session(self.session_factory) as db:
            controller = self.controller_factory(db)
            repo = ChangeRequestRepository(db)
            cursor = None
            while True:
                page = repo.awaiting_payment_page(self.batch_size, after=cursor)
                for _, request_id in page:
                    result.checked += 1
                    if await self._check(controller, request_id, result):
                        result.settled += 1
                if len(page) < self.batch_size:
                    break
                cursor = page[-1]

        if result.settled:
            logger.info("Payment poll completed", extra={"checked": result.checked, "settled": result.settled})
        return result

    async def _check(self, controller: ChangeRequestController, request_id, result: PollResult) -> bool:
        """True if the request is paid after the check"""
        try:
            record = await controller.check_payment_status(request_id, actor="poller")
        except CheckoutGatewayError as e:
            result.errors += 1
            logger.warning(
                f"Payment status check failed: {e}",
                extra={"change_request_id": str(request_id)},
            )
            return False
        except DomainException as e:
            # Usually a concurrent transition; the request moved on
            result.errors += 1
            logger.info(
                f"Skipping change request: {e}",
                extra={"change_request_id": str(request_id)},
            )
            return False

        return record.status == ChangeStatus.PAID.value


class ExpirationSweeper(PeriodicWorker):
    """Expires invoiced requests whose payment window has passed"""

    name = "expiration-sweeper"

    def __init__(self, *args, clock: Callable[[], datetime] = utcnow, **kwargs):
        super().__init__(*args, **kwargs)
        self.clock = clock

    async def run_once(self, now: Optional[datetime] = None) -> int:
        """Returns the number of requests expired by this run"""
        now = now or self.clock()
        expired = 0
        with worker_session(self.session_factory) as db:
            controller = self.controller_factory(db)
            for request_id in ChangeRequestRepository(db).ids_due_for_expiry(now, self.batch_size):
                if await controller.expire(request_id, now=now, actor="sweeper"):
                    expired += 1

        if expired:
            logger.info("Expired unpaid invoices", extra={"expired": expired})
        return expired
