"""
Limit order monitor: evaluates pending price-triggered orders and executes
the ones whose condition holds.

Each order is claimed (pending -> triggered) with a conditional update before
any provider call, so at most one executor ever places an order for it.
"""
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Iterable, Optional

from . import price_service
from .conditions import PriceSnapshot, evaluate_condition, is_fresh
from .config import config
from .database import DatabaseService
from .errors import ErrorCategory, ProviderResponseError, classify_error
from .models import (
    LIMIT_EXECUTED,
    LIMIT_FAILED,
    Order,
    Quote,
    swap_history_document,
)
from .notifier import Notifier
from .sideshift_client import SideShiftClient

logger = logging.getLogger(__name__)

PriceSource = Callable[[Iterable[str]], Awaitable[Dict[str, PriceSnapshot]]]
VolumeEstimator = Callable[[str, float], Awaitable[Optional[float]]]


def attempt_key_for(order_id: str) -> str:
    return f"limit-{order_id}"


class LimitOrderMonitor:
    def __init__(
        self,
        db_service: DatabaseService,
        sideshift: SideShiftClient,
        notifier: Notifier,
        price_source: PriceSource = price_service.get_price_snapshots,
        volume_estimator: VolumeEstimator = price_service.estimate_volume_usd,
        max_price_age_seconds: Optional[float] = None,
        claim_lease_seconds: Optional[int] = None,
    ):
        self.db = db_service
        self.sideshift = sideshift
        self.notifier = notifier
        self.price_source = price_source
        self.volume_estimator = volume_estimator
        self.max_price_age_seconds = max_price_age_seconds or config.PRICE_MAX_AGE_SECONDS
        self.claim_lease_seconds = claim_lease_seconds or config.CLAIM_LEASE_SECONDS

    async def init(self):
        """Resolve orders left triggered by a previous process."""
        recovered = await self.recover_stale_claims()
        logger.info(f"Limit order monitor ready ({recovered} stale claims recovered)")

    async def recover_stale_claims(self, now: Optional[datetime] = None) -> int:
        """
        Settle orders stuck in triggered past the claim lease.

        An order whose swap history already carries a provider order id was
        placed and is marked executed. Otherwise the outcome is unknown and
        the order is failed rather than risking a second placement.
        """
        now = now or datetime.utcnow()
        cutoff = now - timedelta(seconds=self.claim_lease_seconds)
        recovered = 0
        for order in await self.db.list_stale_triggered_limit_orders(cutoff):
            order_id = order["_id"]
            attempt_key = attempt_key_for(order_id)
            attempt = await self.db.get_swap_history_by_attempt(attempt_key)
            provider_id = order.get("sideshift_order_id")
            if not provider_id and attempt and attempt.get("sideshift_order_id") != attempt_key:
                provider_id = attempt["sideshift_order_id"]

            if provider_id:
                await self.db.update_limit_order_status(order_id, LIMIT_EXECUTED, sideshift_order_id=provider_id)
                logger.info(f"Recovered limit order {order_id} as executed ({provider_id})")
            else:
                await self._fail(order, "Execution was interrupted. Please check your wallet before retrying.")
                logger.warning(f"Recovered limit order {order_id} as failed")
            recovered += 1
        return recovered

    async def check_pending_limit_orders(self) -> dict:
        """
        Evaluate every pending limit order once.

        Returns:
            Counts of what happened to the orders in this pass
        """
        summary = {
            "checked": 0, "skipped": 0, "executed": 0, "released": 0, "failed": 0, "unconfirmed": 0, "errors": 0,
        }

        await self.recover_stale_claims()

        orders = await self.db.list_pending_limit_orders()
        if not orders:
            return summary

        assets = {order["condition_asset"] for order in orders}
        snapshots = await self.price_source(assets)
        now = datetime.utcnow()

        for order in orders:
            summary["checked"] += 1
            try:
                snapshot = snapshots.get(order["condition_asset"])
                if not is_fresh(snapshot, now, self.max_price_age_seconds):
                    logger.info(f"No fresh price for {order['condition_asset']}, skipping limit order {order['_id']}")
                    summary["skipped"] += 1
                    continue

                if not evaluate_condition(order, snapshot, now=now, max_age_seconds=self.max_price_age_seconds):
                    continue

                logger.info(
                    f"Limit order {order['_id']} triggered: {order['condition_asset']} "
                    f"{snapshot.price} {order['condition_operator']} {order['condition_value']}"
                )
                outcome = await self.execute_order(order, snapshot.price)
                summary[outcome] += 1
            except Exception as e:
                logger.error(f"Error processing limit order {order.get('_id')}: {e}", exc_info=True)
                summary["errors"] += 1

        return summary

    async def execute_order(self, order: dict, trigger_price: float) -> str:
        """
        Claim and execute one triggered order.

        Returns:
            "executed", "released" (back to pending), "failed", "skipped" or
            "unconfirmed" (left triggered for stale claim recovery)
        """
        order_id = order["_id"]
        claimed = await self.db.claim_limit_order(order_id, trigger_price)
        if not claimed:
            logger.info(f"Limit order {order_id} already claimed, skipping")
            return "skipped"

        if not claimed.get("settle_address"):
            await self._fail(claimed, "Missing destination address")
            return "failed"

        try:
            quote = await self.sideshift.create_quote(
                claimed["from_asset"],
                claimed["from_chain"],
                claimed["to_asset"],
                claimed["to_chain"],
                claimed["amount"],
            )
        except Exception as e:
            return await self._handle_error(claimed, e)

        try:
            placed = await self.sideshift.create_order(
                quote.id,
                claimed["settle_address"],
                refund_address=claimed["settle_address"],
            )
        except Exception as e:
            return await self._handle_error(claimed, e, placing=True)

        # The provider order exists from here on. A failed write leaves the
        # order triggered for recover_stale_claims.
        await self._record_history(claimed, quote, placed)
        await self.db.update_limit_order_status(order_id, LIMIT_EXECUTED, sideshift_order_id=placed.id)
        await self.db.watch_order(placed.id, claimed["owner"], placed.status)

        await self.notifier.notify(claimed["owner"], "limit_triggered", {
            "limit_order_id": order_id,
            "order_id": placed.id,
            "condition_asset": claimed["condition_asset"],
            "condition_operator": claimed["condition_operator"],
            "condition_value": claimed["condition_value"],
            "trigger_price": trigger_price,
            "amount": claimed["amount"],
            "from_asset": claimed["from_asset"],
            "to_asset": claimed["to_asset"],
            "deposit_address": placed.depositAddress,
            "deposit_memo": placed.depositMemo,
            "deposit_amount": placed.depositAmount or quote.depositAmount,
        })
        return "executed"

    async def _record_history(self, order: dict, quote: Quote, placed: Order):
        attempt_key = attempt_key_for(order["_id"])
        volume_usd = await self.volume_estimator(order["from_asset"], order["amount"])

        if await self.db.get_swap_history_by_attempt(attempt_key):
            await self.db.attach_provider_order(
                attempt_key,
                placed.id,
                deposit_address=placed.depositAddress,
                settle_amount=placed.settleAmount or quote.settleAmount,
                quote_id=quote.id,
                volume_usd=volume_usd,
            )
            return

        entry = swap_history_document(
            sideshift_order_id=placed.id,
            user_id=order["owner"],
            from_asset=order["from_asset"],
            to_asset=order["to_asset"],
            from_amount=order["amount"],
            source="limit",
            from_network=order["from_chain"],
            to_network=order["to_chain"],
            settle_amount=placed.settleAmount or quote.settleAmount,
            deposit_address=placed.depositAddress,
            quote_id=quote.id,
            wallet_address=order.get("wallet_address"),
            volume_usd=volume_usd,
            attempt_key=attempt_key,
        )
        await self.db.create_swap_history_entry(entry)

    async def _handle_error(self, claimed: dict, error: Exception, placing: bool = False) -> str:
        """
        Apply the error policy to a failed provider call.

        Retryable errors release the order back to pending. Rejections fail
        it. An unreadable or unexpected failure of the order request leaves
        the order triggered, because the provider may have created the shift;
        recover_stale_claims settles it once the lease runs out.
        """
        order_id = claimed["_id"]
        category = classify_error(error)

        if placing and (isinstance(error, ProviderResponseError) or category is ErrorCategory.UNKNOWN):
            logger.error(f"Limit order {order_id}: outcome of order request unknown, leaving it claimed: {error}")
            return "unconfirmed"

        if category in (ErrorCategory.VALIDATION, ErrorCategory.NOT_FOUND):
            await self._fail(claimed, getattr(error, "message", str(error)))
            return "failed"

        if category is ErrorCategory.UNKNOWN:
            logger.error(f"Limit order {order_id} hit an unexpected error, releasing: {error}", exc_info=error)
        else:
            logger.warning(f"Limit order {order_id} hit a {category.value} error, releasing: {error}")
        await self.db.release_limit_order(order_id, reason=str(error))
        return "released"

    async def _fail(self, order: dict, reason: str):
        order_id = order["_id"]
        await self.db.update_limit_order_status(order_id, LIMIT_FAILED, failure_reason=reason)
        await self.db.update_swap_history_status(attempt_key_for(order_id), "failed")
        logger.warning(f"Limit order {order_id} failed: {reason}")
        await self.notifier.notify(order["owner"], "limit_failed", {
            "limit_order_id": order_id,
            "reason": reason,
        })
