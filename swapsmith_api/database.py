"""
Database service for MongoDB operations.
Handles users, limit orders, DCA schedules, swap history, price alerts and
watched orders.
"""
import functools
import logging
from datetime import datetime, timedelta
from typing import List, Optional
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from swapsmith_api.errors import PersistenceError
from swapsmith_api.models import (
    LIMIT_CANCELLED,
    LIMIT_PENDING,
    LIMIT_TRIGGERED,
    is_forward_transition,
    user_document,
    watched_order_document,
)

logger = logging.getLogger(__name__)


def persistence_errors(func):
    """Re-raise driver failures from a write as PersistenceError."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except PyMongoError as e:
            logger.error(f"{func.__name__} failed: {e}")
            raise PersistenceError(f"{func.__name__} failed: {e}") from e
    return wrapper


class DatabaseService:
    def __init__(self, mongo_url: str, database_name: str, timeout_ms: int = 10000):
        self.client = AsyncIOMotorClient(
            mongo_url,
            serverSelectionTimeoutMS=timeout_ms,
            socketTimeoutMS=timeout_ms,
        )
        self.db: AsyncIOMotorDatabase = self.client[database_name]

        # Collections
        self.users = self.db["users"]
        self.limit_orders = self.db["limit_orders"]
        self.dca_schedules = self.db["dca_schedules"]
        self.swap_history = self.db["swap_history"]
        self.watched_orders = self.db["watched_orders"]
        self.price_alerts = self.db["price_alerts"]

    async def setup_indexes(self):
        """Create necessary indexes for performance."""
        # Users indexes
        await self.users.create_index("user_id", unique=True)
        await self.users.create_index("tg_user_id", sparse=True)
        await self.users.create_index("wallet_address", sparse=True)

        # Limit order indexes
        await self.limit_orders.create_index("owner")
        await self.limit_orders.create_index([("status", 1), ("claimed_at", 1)])

        # DCA schedule indexes
        await self.dca_schedules.create_index("owner")
        await self.dca_schedules.create_index([("is_active", 1), ("next_execution", 1)])

        # Swap history indexes
        await self.swap_history.create_index("sideshift_order_id", unique=True)
        await self.swap_history.create_index("attempt_key", unique=True)
        await self.swap_history.create_index("user_id")
        await self.swap_history.create_index("wallet_address", sparse=True)
        await self.swap_history.create_index("created_at")

        # Watched orders indexes
        await self.watched_orders.create_index("sideshift_order_id", unique=True)

        # Price alert indexes
        await self.price_alerts.create_index("owner")
        await self.price_alerts.create_index("is_active")

        logger.info("Database indexes created")

    # =========================================================================
    # USER OPERATIONS
    # =========================================================================

    async def get_user(self, user_id: str) -> Optional[dict]:
        return await self.users.find_one({"user_id": user_id})

    async def get_user_by_tg_id(self, tg_user_id: int) -> Optional[dict]:
        """Get user by Telegram user ID."""
        return await self.users.find_one({"tg_user_id": tg_user_id})

    @persistence_errors
    async def get_or_create_user(
        self,
        user_id: str,
        tg_user_id: Optional[int] = None,
        tg_username: Optional[str] = None,
        wallet_address: Optional[str] = None,
    ) -> dict:
        """Get existing user or create a new one, filling in missing details."""
        user = await self.get_user(user_id)
        if user:
            update_data = {}
            if tg_user_id and user.get("tg_user_id") != tg_user_id:
                update_data["tg_user_id"] = tg_user_id
            if tg_username and user.get("tg_username") != tg_username:
                update_data["tg_username"] = tg_username
            if wallet_address and not user.get("wallet_address"):
                update_data["wallet_address"] = wallet_address

            if update_data:
                await self.users.update_one({"user_id": user_id}, {"$set": update_data})
                user.update(update_data)
            return user

        user = user_document(user_id, tg_user_id, tg_username, wallet_address)
        await self.users.insert_one(user)
        logger.info(f"Created user {user_id}")
        return user

    @persistence_errors
    async def set_wallet_address(self, user_id: str, wallet_address: str) -> bool:
        result = await self.users.update_one(
            {"user_id": user_id},
            {"$set": {"wallet_address": wallet_address}},
        )
        return result.modified_count > 0

    # =========================================================================
    # LIMIT ORDER OPERATIONS
    # =========================================================================

    @persistence_errors
    async def create_limit_order(self, order: dict) -> dict:
        await self.limit_orders.insert_one(order)
        logger.info(
            f"Created limit order {order['_id']} for {order['owner']}: "
            f"{order['amount']} {order['from_asset']} -> {order['to_asset']} "
            f"when {order['condition_asset']} {order['condition_operator']} {order['condition_value']}"
        )
        return order

    async def get_limit_order(self, order_id: str) -> Optional[dict]:
        return await self.limit_orders.find_one({"_id": order_id})

    async def list_pending_limit_orders(self) -> List[dict]:
        """All limit orders still waiting for their price condition."""
        cursor = self.limit_orders.find({"status": LIMIT_PENDING})
        return await cursor.to_list(length=None)

    async def list_limit_orders_by_owner(self, owner: str, active_only: bool = False) -> List[dict]:
        query = {"owner": owner}
        if active_only:
            query["status"] = {"$in": [LIMIT_PENDING, LIMIT_TRIGGERED]}
        cursor = self.limit_orders.find(query, sort=[("created_at", -1)])
        return await cursor.to_list(length=None)

    @persistence_errors
    async def claim_limit_order(self, order_id: str, trigger_price: float) -> Optional[dict]:
        """
        Atomically move a limit order from pending to triggered.

        Returns:
            The claimed order, or None if another worker got there first
            or the order is no longer pending.
        """
        now = datetime.utcnow()
        return await self.limit_orders.find_one_and_update(
            {"_id": order_id, "status": LIMIT_PENDING},
            {"$set": {
                "status": LIMIT_TRIGGERED,
                "claimed_at": now,
                "trigger_price": trigger_price,
                "updated_at": now,
            }},
            return_document=ReturnDocument.AFTER,
        )

    @persistence_errors
    async def release_limit_order(self, order_id: str, reason: Optional[str] = None) -> bool:
        """Put a triggered order back to pending so a later tick re-evaluates it."""
        result = await self.limit_orders.update_one(
            {"_id": order_id, "status": LIMIT_TRIGGERED},
            {"$set": {
                "status": LIMIT_PENDING,
                "claimed_at": None,
                "failure_reason": reason,
                "updated_at": datetime.utcnow(),
            }},
        )
        return result.modified_count > 0

    @persistence_errors
    async def update_limit_order_status(
        self,
        order_id: str,
        status: str,
        sideshift_order_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
        expected_status: Optional[str] = LIMIT_TRIGGERED,
    ) -> bool:
        """
        Set a limit order's status.

        Args:
            order_id: Limit order id
            status: New status
            sideshift_order_id: Provider order id once one exists
            failure_reason: Why the order failed
            expected_status: Only update if the order is currently in this
                status (None to update unconditionally)

        Returns:
            True if the order was updated
        """
        query = {"_id": order_id}
        if expected_status:
            query["status"] = expected_status

        update = {"status": status, "updated_at": datetime.utcnow()}
        if sideshift_order_id:
            update["sideshift_order_id"] = sideshift_order_id
        if failure_reason:
            update["failure_reason"] = failure_reason

        result = await self.limit_orders.update_one(query, {"$set": update})
        if result.modified_count:
            logger.info(f"Limit order {order_id} -> {status}")
        return result.modified_count > 0

    @persistence_errors
    async def cancel_limit_order(self, order_id: str, owner: str) -> bool:
        """Cancel a pending limit order. Orders already triggered cannot be cancelled."""
        result = await self.limit_orders.update_one(
            {"_id": order_id, "owner": owner, "status": LIMIT_PENDING},
            {"$set": {"status": LIMIT_CANCELLED, "updated_at": datetime.utcnow()}},
        )
        return result.modified_count > 0

    async def list_stale_triggered_limit_orders(self, claimed_before: datetime) -> List[dict]:
        """Triggered orders whose executor never finished (crash or failed write)."""
        cursor = self.limit_orders.find({
            "status": LIMIT_TRIGGERED,
            "claimed_at": {"$lt": claimed_before},
        })
        return await cursor.to_list(length=None)

    # =========================================================================
    # DCA SCHEDULE OPERATIONS
    # =========================================================================

    @persistence_errors
    async def create_dca_schedule(self, schedule: dict) -> dict:
        await self.dca_schedules.insert_one(schedule)
        logger.info(
            f"Created DCA schedule {schedule['_id']} for {schedule['owner']}: "
            f"{schedule['amount']} {schedule['from_asset']} -> {schedule['to_asset']} {schedule['frequency']}"
        )
        return schedule

    async def get_dca_schedule(self, schedule_id: str) -> Optional[dict]:
        return await self.dca_schedules.find_one({"_id": schedule_id})

    async def list_dca_schedules_by_owner(self, owner: str, active_only: bool = False) -> List[dict]:
        query = {"owner": owner}
        if active_only:
            query["is_active"] = True
        cursor = self.dca_schedules.find(query, sort=[("next_execution", 1)])
        return await cursor.to_list(length=None)

    async def list_due_dca_schedules(self, now: datetime) -> List[dict]:
        """Active schedules with next_execution <= now that are not backing off or leased."""
        cursor = self.dca_schedules.find({
            "is_active": True,
            "next_execution": {"$lte": now},
            "$and": [
                {"$or": [{"retry_after": None}, {"retry_after": {"$lte": now}}]},
                {"$or": [{"locked_until": None}, {"locked_until": {"$lte": now}}]},
            ],
        })
        return await cursor.to_list(length=None)

    @persistence_errors
    async def claim_dca_schedule(self, schedule_id: str, slot: datetime, now: datetime, lease_seconds: int) -> Optional[dict]:
        """
        Take a short lease on one slot of a schedule.

        The claim only succeeds while next_execution still equals `slot`, so a
        slot that another worker already advanced cannot be executed twice.
        """
        return await self.dca_schedules.find_one_and_update(
            {
                "_id": schedule_id,
                "is_active": True,
                "next_execution": slot,
                "$or": [{"locked_until": None}, {"locked_until": {"$lte": now}}],
            },
            {"$set": {"locked_until": now + timedelta(seconds=lease_seconds)}},
            return_document=ReturnDocument.AFTER,
        )

    @persistence_errors
    async def record_dca_success(self, schedule_id: str, next_execution: datetime, executed_at: datetime) -> bool:
        result = await self.dca_schedules.update_one(
            {"_id": schedule_id},
            {
                "$set": {
                    "next_execution": next_execution,
                    "last_executed": executed_at,
                    "consecutive_failures": 0,
                    "retry_after": None,
                    "locked_until": None,
                    "last_error": None,
                },
                "$inc": {"execution_count": 1},
            },
        )
        return result.modified_count > 0

    @persistence_errors
    async def record_dca_failure(
        self,
        schedule_id: str,
        consecutive_failures: int,
        error: str,
        retry_after: Optional[datetime] = None,
        next_execution: Optional[datetime] = None,
        deactivate: bool = False,
    ) -> bool:
        """
        Record a failed execution.

        next_execution is only passed when the slot is being skipped;
        otherwise the same slot is retried after retry_after.
        """
        update = {
            "consecutive_failures": consecutive_failures,
            "retry_after": retry_after,
            "locked_until": None,
            "last_error": error,
        }
        if next_execution is not None:
            update["next_execution"] = next_execution
        if deactivate:
            update["is_active"] = False

        result = await self.dca_schedules.update_one({"_id": schedule_id}, {"$set": update})
        return result.modified_count > 0

    @persistence_errors
    async def cancel_dca_schedule(self, schedule_id: str, owner: str) -> bool:
        result = await self.dca_schedules.update_one(
            {"_id": schedule_id, "owner": owner, "is_active": True},
            {"$set": {"is_active": False, "locked_until": None}},
        )
        return result.modified_count > 0

    # =========================================================================
    # SWAP HISTORY OPERATIONS
    # =========================================================================

    @persistence_errors
    async def create_swap_history_entry(self, entry: dict) -> dict:
        """
        Insert a swap history entry.

        Returns:
            The stored entry. If an entry with the same attempt key already
            exists, that entry is returned instead.
        """
        try:
            await self.swap_history.insert_one(entry)
        except DuplicateKeyError:
            existing = await self.get_swap_history_by_attempt(entry["attempt_key"])
            if existing:
                logger.info(f"Swap history entry {entry['attempt_key']} already exists")
                return existing
            raise
        logger.info(f"Created swap history entry {entry['sideshift_order_id']} ({entry['source']})")
        return entry

    async def get_swap_history_entry(self, order_id: str) -> Optional[dict]:
        """Look up by provider order id or by the synthesized attempt key."""
        return await self.swap_history.find_one({
            "$or": [{"sideshift_order_id": order_id}, {"attempt_key": order_id}]
        })

    async def get_swap_history_by_attempt(self, attempt_key: str) -> Optional[dict]:
        return await self.swap_history.find_one({"attempt_key": attempt_key})

    @persistence_errors
    async def attach_provider_order(
        self,
        attempt_key: str,
        sideshift_order_id: str,
        deposit_address: Optional[str] = None,
        settle_amount: Optional[str] = None,
        quote_id: Optional[str] = None,
        volume_usd: Optional[float] = None,
    ) -> bool:
        """Re-key a synthesized history entry to the provider's order id."""
        update = {
            "sideshift_order_id": sideshift_order_id,
            "deposit_address": deposit_address,
            "settle_amount": settle_amount,
            "quote_id": quote_id,
            "updated_at": datetime.utcnow(),
        }
        if volume_usd is not None:
            update["volume_usd"] = volume_usd
        result = await self.swap_history.update_one({"attempt_key": attempt_key}, {"$set": update})
        return result.modified_count > 0

    @persistence_errors
    async def update_swap_history_status(
        self,
        order_id: str,
        status: str,
        tx_hash: Optional[str] = None,
        force: bool = False,
    ) -> Optional[dict]:
        """
        Move a swap history entry to a new status.

        Status only moves forward (pending < processing < completed < terminal)
        unless force is set. Nothing is written when neither status nor
        tx_hash changes, so repeated calls leave updated_at alone.

        Returns:
            The entry after the update, or None if no entry exists
        """
        entry = await self.get_swap_history_entry(order_id)
        if not entry:
            return None

        current = entry.get("status")
        changes = {}
        if (force and status != current) or is_forward_transition(current, status):
            changes["status"] = status
        elif status != current:
            logger.info(f"Ignoring backward status change for {order_id}: {current} -> {status}")
        if tx_hash and tx_hash != entry.get("tx_hash"):
            changes["tx_hash"] = tx_hash

        if not changes:
            return entry

        changes["updated_at"] = datetime.utcnow()
        result = await self.swap_history.update_one(
            {"sideshift_order_id": entry["sideshift_order_id"], "status": current},
            {"$set": changes},
        )
        if not result.modified_count:
            # Someone else moved it first; report what is stored now
            return await self.get_swap_history_entry(order_id)

        entry.update(changes)
        logger.info(f"Swap {entry['sideshift_order_id']} status {current} -> {entry['status']}")
        return entry

    async def list_swap_history(
        self,
        user_id: Optional[str] = None,
        wallet_address: Optional[str] = None,
        limit: int = 0,
    ) -> List[dict]:
        """Swap history for a user and/or wallet, newest first."""
        query = {}
        if user_id:
            query["user_id"] = user_id
        if wallet_address:
            query["wallet_address"] = wallet_address
        cursor = self.swap_history.find(query, sort=[("created_at", -1)], limit=limit)
        return await cursor.to_list(length=None)

    # =========================================================================
    # PRICE ALERT OPERATIONS
    # =========================================================================

    @persistence_errors
    async def create_price_alert(self, alert: dict) -> dict:
        await self.price_alerts.insert_one(alert)
        logger.info(
            f"Created price alert {alert['_id']} for {alert['owner']}: "
            f"{alert['coin']} {alert['condition']} {alert['target_price']}"
        )
        return alert

    async def get_price_alert(self, alert_id: str, owner: str) -> Optional[dict]:
        return await self.price_alerts.find_one({"_id": alert_id, "owner": owner})

    async def list_price_alerts_by_owner(self, owner: str, active_only: bool = False) -> List[dict]:
        query = {"owner": owner}
        if active_only:
            query["is_active"] = True
        cursor = self.price_alerts.find(query, sort=[("created_at", -1)])
        return await cursor.to_list(length=None)

    async def list_active_price_alerts(self) -> List[dict]:
        cursor = self.price_alerts.find({"is_active": True})
        return await cursor.to_list(length=None)

    @persistence_errors
    async def update_price_alert(self, alert_id: str, owner: str, updates: dict) -> Optional[dict]:
        """
        Change target, condition or active flag of an owner's alert.

        Returns:
            The updated alert, or None if the owner has no such alert
        """
        updates = dict(updates, updated_at=datetime.utcnow())
        return await self.price_alerts.find_one_and_update(
            {"_id": alert_id, "owner": owner},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )

    @persistence_errors
    async def delete_price_alert(self, alert_id: str, owner: str) -> bool:
        result = await self.price_alerts.delete_one({"_id": alert_id, "owner": owner})
        return result.deleted_count > 0

    @persistence_errors
    async def mark_price_alert_triggered(self, alert_id: str, price: float, triggered_at: datetime) -> bool:
        """
        Deactivate an alert that fired.

        Returns:
            False if the alert was already inactive, so only one caller notifies
        """
        result = await self.price_alerts.update_one(
            {"_id": alert_id, "is_active": True},
            {"$set": {
                "is_active": False,
                "triggered_price": price,
                "last_triggered_at": triggered_at,
                "updated_at": triggered_at,
            }},
        )
        return result.modified_count > 0

    # =========================================================================
    # WATCHED ORDER OPERATIONS
    # =========================================================================

    @persistence_errors
    async def watch_order(self, sideshift_order_id: str, owner: str, last_status: str = "waiting") -> None:
        doc = watched_order_document(sideshift_order_id, owner, last_status)
        await self.watched_orders.update_one(
            {"sideshift_order_id": sideshift_order_id},
            {"$setOnInsert": doc},
            upsert=True,
        )

    async def list_watched_orders(self) -> List[dict]:
        cursor = self.watched_orders.find({})
        return await cursor.to_list(length=None)

    @persistence_errors
    async def update_watched_order(self, sideshift_order_id: str, last_status: str) -> None:
        await self.watched_orders.update_one(
            {"sideshift_order_id": sideshift_order_id},
            {"$set": {"last_status": last_status, "last_checked": datetime.utcnow()}},
        )

    @persistence_errors
    async def remove_watched_order(self, sideshift_order_id: str) -> None:
        await self.watched_orders.delete_one({"sideshift_order_id": sideshift_order_id})
