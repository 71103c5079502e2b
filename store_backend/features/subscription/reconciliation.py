# store_backend/features/subscription/reconciliation.py

# Background reconciliation of pending payments against the gateway.
# The sweep interval adapts to the backlog: fast while pending payments exist,
# slow once the backlog is clear. Records are checked one at a time with a
# short pause in between to stay under the gateway's rate limits.

import asyncio
from datetime import datetime
from typing import Any, Dict, Optional

from ...config.settings import settings
from ...models.pending_payment import ActivationSource
from ...shared.exceptions import GatewayConfigurationError, GatewayError, NotFoundError
from ...shared.logger import get_logger
from ...shared.utils import utcnow
from ..payment import ledger
from ..payment.gateway import LahzaGateway
from .activation import reconcile_payment

logger = get_logger("payment_reconciler")

# Per-record outcomes counted in a sweep summary
OUTCOMES = ("activated", "already_activated", "failed", "still_pending", "exhausted", "errors", "skipped")


class PaymentReconciler:
    """Polls non-terminal pending payments and drives them to completion."""

    def __init__(
        self,
        gateway: LahzaGateway,
        fast_interval: Optional[float] = None,
        slow_interval: Optional[float] = None,
        item_delay: Optional[float] = None,
    ):
        self.gateway = gateway
        self.fast_interval = settings.POLLING_FAST_INTERVAL_SECONDS if fast_interval is None else fast_interval
        self.slow_interval = settings.POLLING_SLOW_INTERVAL_SECONDS if slow_interval is None else slow_interval
        self.item_delay = settings.POLLING_ITEM_DELAY_SECONDS if item_delay is None else item_delay
        self.has_pending = False
        self.pending_count = 0
        self.last_sweep_at: Optional[datetime] = None
        self.last_summary: Optional[Dict[str, int]] = None

    @property
    def mode(self) -> str:
        return "fast" if self.has_pending else "slow"

    def current_interval(self) -> float:
        """Seconds until the next sweep, based on what the last sweep saw."""
        return self.fast_interval if self.has_pending else self.slow_interval

    async def run_sweep(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Checks every pollable record once. Never raises for a single bad record."""
        sweep_now = now or utcnow()
        summary = {outcome: 0 for outcome in OUTCOMES}

        summary["exhausted"] += await self._exhaust_capped(sweep_now)

        records = await ledger.get_pending_for_polling(sweep_now)
        previous_mode = self.mode
        self.pending_count = len(records)
        self.has_pending = bool(records)
        if self.mode != previous_mode:
            logger.info("Polling mode changed", mode=self.mode, interval_seconds=self.current_interval(), pending_count=self.pending_count)

        for index, record in enumerate(records):
            if index and self.item_delay:
                await asyncio.sleep(self.item_delay)
            try:
                outcome = await self.process_pending_payment(record, now=now)
            except Exception as e:
                logger.error("Unexpected error while checking pending payment", reference=record.get("reference"), error=str(e), exc_info=True)
                outcome = "errors"
            summary[outcome] += 1

        self.last_sweep_at = sweep_now
        self.last_summary = summary
        if records:
            logger.info("Payment reconciliation sweep finished", checked=len(records), **summary)
        return summary

    async def process_pending_payment(self, record: Dict[str, Any], now: Optional[datetime] = None) -> str:
        """Claims, verifies and settles one record. Returns the outcome name."""
        now = now or utcnow()
        reference = record["reference"]

        claimed = await ledger.claim_for_check(reference, now=now)
        if claimed is None:
            logger.debug("Pending payment claimed elsewhere, skipping", reference=reference)
            return "skipped"

        try:
            result = await reconcile_payment(
                self.gateway,
                reference,
                ActivationSource.POLLING,
                store_id=claimed.get("store"),
                plan_id=claimed.get("plan_id"),
                now=now,
            )
        except (GatewayConfigurationError, NotFoundError) as e:
            logger.warning("Pending payment cannot be verified, marked failed", reference=reference, error=str(e))
            return "failed"
        except GatewayError as e:
            logger.warning("Gateway verification failed, will retry", reference=reference, error=str(e))
            await ledger.release_to_pending(reference, now=now)
            return "errors"
        except Exception as e:
            logger.error("Activation from polling failed", reference=reference, error=str(e))
            await ledger.release_to_pending(reference, now=now)
            return "errors"

        if result.status == "success":
            return "already_activated" if result.activation and result.activation.already_activated else "activated"
        if result.status == "failed":
            return "failed"

        if claimed.get("check_attempts", 0) >= settings.PENDING_PAYMENT_MAX_CHECK_ATTEMPTS:
            await ledger.mark_as_exhausted(reference, now=now)
            return "exhausted"

        await ledger.release_to_pending(reference, now=now)
        logger.debug("Payment still pending at gateway", reference=reference, gateway_status=result.gateway_status, check_attempts=claimed.get("check_attempts"))
        return "still_pending"

    async def _exhaust_capped(self, now: datetime) -> int:
        """Closes records that reached the attempt cap through an error path."""
        exhausted = 0
        for record in await ledger.get_capped_pending(now):
            if await ledger.mark_as_exhausted(record["reference"], now=now):
                exhausted += 1
        return exhausted

    def status(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "interval_seconds": self.current_interval(),
            "has_pending_payments": self.has_pending,
            "pending_count": self.pending_count,
            "last_sweep_at": self.last_sweep_at.isoformat() if self.last_sweep_at else None,
            "last_summary": self.last_summary,
        }
