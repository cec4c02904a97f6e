"""
Order creation shared by the HTTP API and the Telegram bot.
"""
import logging
from datetime import datetime
from typing import Optional

from . import price_service
from .database import DatabaseService
from .limit_orders import attempt_key_for
from .models import (
    Order,
    dca_schedule_document,
    limit_order_document,
    swap_history_document,
)
from .schedule import initial_next_execution
from .sideshift_client import SideShiftClient

logger = logging.getLogger(__name__)


async def place_swap_order(
    db: DatabaseService,
    sideshift: SideShiftClient,
    owner: str,
    quote_id: str,
    settle_address: str,
    refund_address: Optional[str] = None,
    wallet_address: Optional[str] = None,
    user_ip: Optional[str] = None,
) -> Order:
    """
    Create a SideShift order from a quote, record it and start watching it.

    Provider errors propagate as typed errors; nothing is stored for them.
    """
    order = await sideshift.create_order(quote_id, settle_address, refund_address=refund_address, user_ip=user_ip)

    from_amount = float(order.depositAmount) if order.depositAmount else 0.0
    volume_usd = await price_service.estimate_volume_usd(order.depositCoin, from_amount)
    await db.create_swap_history_entry(swap_history_document(
        sideshift_order_id=order.id,
        user_id=owner,
        from_asset=order.depositCoin,
        to_asset=order.settleCoin,
        from_amount=from_amount,
        source="manual",
        from_network=order.depositNetwork,
        to_network=order.settleNetwork,
        settle_amount=order.settleAmount,
        deposit_address=order.depositAddress,
        quote_id=quote_id,
        wallet_address=wallet_address,
        volume_usd=volume_usd,
    ))
    await db.watch_order(order.id, owner, order.status)
    return order


async def place_limit_order(
    db: DatabaseService,
    owner: str,
    from_asset: str,
    to_asset: str,
    amount: float,
    condition_operator: str,
    condition_value: float,
    settle_address: str,
    condition_asset: Optional[str] = None,
    from_chain: Optional[str] = None,
    to_chain: Optional[str] = None,
    wallet_address: Optional[str] = None,
) -> dict:
    """Store a pending limit order with its pending swap history entry."""
    order = limit_order_document(
        owner=owner,
        from_asset=from_asset,
        to_asset=to_asset,
        amount=amount,
        condition_operator=condition_operator,
        condition_value=condition_value,
        settle_address=settle_address,
        condition_asset=condition_asset,
        from_chain=from_chain,
        to_chain=to_chain,
        wallet_address=wallet_address,
    )
    await db.create_limit_order(order)

    attempt_key = attempt_key_for(order["_id"])
    await db.create_swap_history_entry(swap_history_document(
        sideshift_order_id=attempt_key,
        user_id=owner,
        from_asset=order["from_asset"],
        to_asset=order["to_asset"],
        from_amount=amount,
        source="limit",
        from_network=order["from_chain"],
        to_network=order["to_chain"],
        wallet_address=wallet_address,
        attempt_key=attempt_key,
    ))
    return order


async def place_dca_schedule(
    db: DatabaseService,
    owner: str,
    from_asset: str,
    to_asset: str,
    amount: float,
    frequency: str,
    settle_address: str,
    day_of_week: Optional[int] = None,
    day_of_month: Optional[int] = None,
    from_chain: Optional[str] = None,
    to_chain: Optional[str] = None,
    smart: bool = False,
    wallet_address: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Store an active DCA schedule whose first run is the next matching slot."""
    now = now or datetime.utcnow()
    schedule = dca_schedule_document(
        owner=owner,
        from_asset=from_asset,
        to_asset=to_asset,
        amount=amount,
        frequency=frequency,
        next_execution=initial_next_execution(frequency, now, day_of_week, day_of_month),
        settle_address=settle_address,
        day_of_week=day_of_week,
        day_of_month=day_of_month,
        from_chain=from_chain,
        to_chain=to_chain,
        smart=smart,
        wallet_address=wallet_address,
    )
    return await db.create_dca_schedule(schedule)


async def cancel_limit_order(db: DatabaseService, order_id: str, owner: str) -> bool:
    """Cancel a pending limit order and close its pending history entry."""
    if not await db.cancel_limit_order(order_id, owner):
        return False
    await db.update_swap_history_status(attempt_key_for(order_id), "cancelled")
    logger.info(f"Limit order {order_id} cancelled by {owner}")
    return True
