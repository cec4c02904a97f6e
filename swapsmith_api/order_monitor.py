"""
Swap status reconciliation against SideShift.
"""
import logging
from typing import Optional

from .database import DatabaseService
from .errors import NotFoundError
from .models import TERMINAL_SWAP_STATUSES, map_sideshift_status
from .notifier import Notifier
from .sideshift_client import SideShiftClient

logger = logging.getLogger(__name__)

SYNTHETIC_PREFIXES = ("limit-", "dca-", "stake-")


def is_synthetic_order_id(order_id: str) -> bool:
    """Keys we make up before the provider has issued an order id."""
    return order_id.startswith(SYNTHETIC_PREFIXES)


class OrderMonitor:
    def __init__(self, db_service: DatabaseService, sideshift: SideShiftClient, notifier: Optional[Notifier] = None):
        self.db = db_service
        self.sideshift = sideshift
        self.notifier = notifier

    async def reconcile(self, order_id: str) -> Optional[dict]:
        """
        Bring one swap history entry in line with the provider.

        Terminal entries and entries without a provider order id are returned
        untouched. Nothing is written unless status or tx hash changed.

        Returns:
            The stored entry, or None if there is no entry for order_id
        """
        entry = await self.db.get_swap_history_entry(order_id)
        if entry is None:
            return None

        provider_id = entry["sideshift_order_id"]
        if entry.get("status") in TERMINAL_SWAP_STATUSES or is_synthetic_order_id(provider_id):
            return entry

        try:
            remote = await self.sideshift.get_order_status(provider_id)
        except NotFoundError:
            logger.warning(f"SideShift order {provider_id} not found, marking failed")
            return await self.db.update_swap_history_status(provider_id, "failed")

        status = map_sideshift_status(remote.status)
        return await self.db.update_swap_history_status(provider_id, status, tx_hash=remote.settleHash)

    async def check_watched_orders(self) -> dict:
        """Poll every watched order, notify owners on change, drop finished ones."""
        summary = {"checked": 0, "changed": 0, "removed": 0, "errors": 0}

        for watched in await self.db.list_watched_orders():
            order_id = watched["sideshift_order_id"]
            summary["checked"] += 1
            try:
                try:
                    remote = await self.sideshift.get_order_status(order_id)
                except NotFoundError:
                    logger.warning(f"Watched order {order_id} not found, removing")
                    await self.db.update_swap_history_status(order_id, "failed")
                    await self.db.remove_watched_order(order_id)
                    summary["removed"] += 1
                    continue

                status = map_sideshift_status(remote.status)
                if remote.status != watched.get("last_status"):
                    summary["changed"] += 1
                    await self.db.update_watched_order(order_id, remote.status)
                    await self.db.update_swap_history_status(order_id, status, tx_hash=remote.settleHash)
                    if self.notifier:
                        await self.notifier.notify(watched["owner"], "order_status", {
                            "order_id": order_id,
                            "status": status,
                            "tx_hash": remote.settleHash,
                        })

                if status in TERMINAL_SWAP_STATUSES:
                    await self.db.remove_watched_order(order_id)
                    summary["removed"] += 1
            except Exception as e:
                logger.error(f"Error checking watched order {order_id}: {e}", exc_info=True)
                summary["errors"] += 1

        return summary
