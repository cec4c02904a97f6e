"""
DCA runner: places one SideShift order per due schedule slot.

Every slot has its own attempt key (dca-<id>-<YYYYmmddHHMM>). The swap history
entry for that key is written before the provider is called and re-keyed to
the provider order id afterwards, so a slot that already produced an order is
never placed again.
"""
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, Iterable, Optional

from . import price_service
from .config import config
from .database import DatabaseService
from .errors import ErrorCategory, ProviderResponseError, classify_error
from .models import swap_history_document
from .notifier import Notifier
from .schedule import advance_past, retry_delay, slot_key, smart_multiplier
from .sideshift_client import SideShiftClient

logger = logging.getLogger(__name__)

ChangeSource = Callable[[Iterable[str]], Awaitable[Dict[str, dict]]]
VolumeEstimator = Callable[[str, float], Awaitable[Optional[float]]]


class DcaRunner:
    def __init__(
        self,
        db_service: DatabaseService,
        sideshift: SideShiftClient,
        notifier: Notifier,
        change_source: ChangeSource = price_service.get_prices_with_change,
        volume_estimator: VolumeEstimator = price_service.estimate_volume_usd,
        max_consecutive_failures: Optional[int] = None,
        retry_base_seconds: Optional[int] = None,
        lease_seconds: Optional[int] = None,
    ):
        self.db = db_service
        self.sideshift = sideshift
        self.notifier = notifier
        self.change_source = change_source
        self.volume_estimator = volume_estimator
        self.max_consecutive_failures = max_consecutive_failures or config.DCA_MAX_CONSECUTIVE_FAILURES
        self.retry_base_seconds = retry_base_seconds or config.DCA_RETRY_BASE_SECONDS
        self.lease_seconds = lease_seconds or config.CLAIM_LEASE_SECONDS

    async def run_due_schedules(self, now: Optional[datetime] = None) -> dict:
        """Execute every schedule whose next_execution is due."""
        now = now or datetime.utcnow()
        summary = {"due": 0, "executed": 0, "retrying": 0, "skipped": 0, "failed": 0, "errors": 0}

        schedules = await self.db.list_due_dca_schedules(now)
        summary["due"] = len(schedules)
        if not schedules:
            return summary
        logger.info(f"Checking DCA schedules: found {len(schedules)} due")

        smart_assets = {s["to_asset"] for s in schedules if s.get("smart")}
        changes = await self.change_source(smart_assets) if smart_assets else {}

        for schedule in schedules:
            try:
                change = (changes.get(schedule["to_asset"]) or {}).get("change_24h")
                outcome = await self.execute_schedule(schedule, now, change_24h=change)
                summary[outcome] += 1
            except Exception as e:
                logger.error(f"Failed to execute DCA {schedule.get('_id')}: {e}", exc_info=True)
                summary["errors"] += 1

        return summary

    async def execute_schedule(self, schedule: dict, now: datetime, change_24h: Optional[float] = None) -> str:
        """
        Run the current slot of one schedule.

        Returns:
            "executed", "retrying", "skipped" or "failed"
        """
        schedule_id = schedule["_id"]
        slot = schedule["next_execution"]

        claimed = await self.db.claim_dca_schedule(schedule_id, slot, now, self.lease_seconds)
        if not claimed:
            logger.info(f"DCA {schedule_id} slot {slot} already claimed, skipping")
            return "skipped"

        attempt_key = slot_key(schedule_id, slot)
        next_slot = self._next_slot(claimed, slot, now)

        attempt = await self.db.get_swap_history_by_attempt(attempt_key)
        if attempt and attempt["sideshift_order_id"] != attempt_key:
            logger.warning(f"DCA {schedule_id} slot {slot} already has order {attempt['sideshift_order_id']}, advancing")
            await self.db.record_dca_success(schedule_id, next_slot, now)
            return "executed"

        if not claimed.get("settle_address"):
            await self._deactivate(claimed, attempt_key, "No settle address for this schedule")
            return "failed"

        multiplier = smart_multiplier(change_24h) if claimed.get("smart") else 1.0
        amount = round(claimed["amount"] * multiplier, 6)

        if not attempt:
            await self.db.create_swap_history_entry(swap_history_document(
                sideshift_order_id=attempt_key,
                user_id=claimed["owner"],
                from_asset=claimed["from_asset"],
                to_asset=claimed["to_asset"],
                from_amount=amount,
                source="dca",
                from_network=claimed["from_chain"],
                to_network=claimed["to_chain"],
                wallet_address=claimed.get("wallet_address"),
                attempt_key=attempt_key,
            ))

        try:
            quote = await self.sideshift.create_quote(
                claimed["from_asset"],
                claimed["from_chain"],
                claimed["to_asset"],
                claimed["to_chain"],
                amount,
            )
        except Exception as e:
            return await self._handle_error(claimed, attempt_key, now, e)

        try:
            placed = await self.sideshift.create_order(
                quote.id,
                claimed["settle_address"],
                refund_address=claimed["settle_address"],
            )
        except Exception as e:
            return await self._handle_error(claimed, attempt_key, now, e, placing=True)

        volume_usd = await self.volume_estimator(claimed["from_asset"], amount)
        await self.db.attach_provider_order(
            attempt_key,
            placed.id,
            deposit_address=placed.depositAddress,
            settle_amount=placed.settleAmount or quote.settleAmount,
            quote_id=quote.id,
            volume_usd=volume_usd,
        )
        await self.db.record_dca_success(schedule_id, next_slot, now)
        await self.db.watch_order(placed.id, claimed["owner"], placed.status)
        logger.info(f"Executed DCA schedule {schedule_id}, order {placed.id}, next run {next_slot}")

        await self.notifier.notify(claimed["owner"], "dca_executed", {
            "schedule_id": schedule_id,
            "order_id": placed.id,
            "amount": amount,
            "multiplier": multiplier,
            "from_asset": claimed["from_asset"],
            "to_asset": claimed["to_asset"],
            "deposit_address": placed.depositAddress,
            "deposit_memo": placed.depositMemo,
            "deposit_amount": placed.depositAmount or quote.depositAmount,
            "next_execution": next_slot,
        })
        return "executed"

    @staticmethod
    def _next_slot(schedule: dict, slot: datetime, now: datetime) -> datetime:
        return advance_past(
            schedule["frequency"],
            slot,
            now,
            day_of_week=schedule.get("day_of_week"),
            day_of_month=schedule.get("day_of_month"),
        )

    async def _handle_error(
        self,
        schedule: dict,
        attempt_key: str,
        now: datetime,
        error: Exception,
        placing: bool = False,
    ) -> str:
        """
        Apply the error policy to a failed provider call.

        Rejections deactivate the schedule. When the order request ends in an
        unreadable or unexpected failure the shift may exist, so the slot is
        given up instead of retried. Everything else backs off on the slot.
        """
        category = classify_error(error)
        message = getattr(error, "message", None) or str(error)

        if category in (ErrorCategory.VALIDATION, ErrorCategory.NOT_FOUND):
            await self._deactivate(schedule, attempt_key, message)
            return "failed"

        if placing and (isinstance(error, ProviderResponseError) or category is ErrorCategory.UNKNOWN):
            logger.error(f"DCA {schedule['_id']}: outcome of order request unknown, giving up the slot: {error}")
            return await self._skip_slot(schedule, attempt_key, now, message)

        if category is ErrorCategory.UNKNOWN:
            logger.error(f"DCA {schedule['_id']} hit an unexpected error: {error}", exc_info=error)
        return await self._record_failure(schedule, attempt_key, now, message)

    async def _record_failure(self, schedule: dict, attempt_key: str, now: datetime, error: str) -> str:
        """Back off on the same slot, or give the slot up after too many failures."""
        schedule_id = schedule["_id"]
        failures = schedule.get("consecutive_failures", 0) + 1

        if failures >= self.max_consecutive_failures:
            logger.warning(f"DCA {schedule_id} giving up slot after {failures} failures")
            return await self._skip_slot(schedule, attempt_key, now, error)

        retry_after = now + retry_delay(failures, self.retry_base_seconds, schedule["frequency"])
        await self.db.record_dca_failure(schedule_id, failures, error, retry_after=retry_after)
        logger.warning(f"DCA {schedule_id} failed ({failures}/{self.max_consecutive_failures}), retry after {retry_after}: {error}")
        return "retrying"

    async def _skip_slot(self, schedule: dict, attempt_key: str, now: datetime, error: str) -> str:
        schedule_id = schedule["_id"]
        next_slot = self._next_slot(schedule, schedule["next_execution"], now)
        await self.db.record_dca_failure(schedule_id, 0, error, next_execution=next_slot)
        await self.db.update_swap_history_status(attempt_key, "failed")
        logger.warning(f"DCA {schedule_id} skipped slot, next run {next_slot}: {error}")
        await self.notifier.notify(schedule["owner"], "dca_failed", {
            "schedule_id": schedule_id,
            "reason": error,
            "skipped": True,
        })
        return "skipped"

    async def _deactivate(self, schedule: dict, attempt_key: str, reason: str):
        schedule_id = schedule["_id"]
        await self.db.record_dca_failure(
            schedule_id,
            schedule.get("consecutive_failures", 0) + 1,
            reason,
            deactivate=True,
        )
        await self.db.update_swap_history_status(attempt_key, "failed")
        logger.warning(f"DCA {schedule_id} deactivated: {reason}")
        await self.notifier.notify(schedule["owner"], "dca_failed", {
            "schedule_id": schedule_id,
            "reason": reason,
            "deactivated": True,
        })
