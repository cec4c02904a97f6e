"""
User notifications over Telegram.

notify() never raises: a failed notification is reported back to the caller
and logged, but never undoes the action it describes.
"""
import asyncio
import html
import logging
from typing import Optional

from .config import config
from .database import DatabaseService

logger = logging.getLogger(__name__)

TELEGRAM_PREFIX = "telegram:"

STATUS_MESSAGES = {
    "pending": "⏳ Waiting for your deposit",
    "processing": "🔄 Deposit received, swap in progress",
    "completed": "✅ Swap completed",
    "settled": "✅ Swap settled! Funds have been sent to your wallet",
    "failed": "❌ Swap failed. Any deposit will be refunded",
    "cancelled": "🚫 Swap cancelled",
    "expired": "⌛ Swap expired before a deposit arrived",
}


def _deposit_lines(payload: dict) -> str:
    if not payload.get("deposit_address"):
        return ""
    lines = (
        f"\n\n📥 Send <b>{payload.get('deposit_amount', '')} {html.escape(str(payload.get('from_asset', '')))}</b> to:\n"
        f"<code>{html.escape(payload['deposit_address'])}</code>"
    )
    if payload.get("deposit_memo"):
        lines += f"\nMemo: <code>{html.escape(payload['deposit_memo'])}</code>"
    if payload.get("order_id"):
        lines += f"\nOrder ID: <code>{html.escape(payload['order_id'])}</code>"
    return lines


def _format_limit_triggered(payload: dict) -> str:
    return (
        f"🎯 <b>Limit order triggered</b>\n\n"
        f"{payload.get('condition_asset')} hit ${payload.get('trigger_price'):,.2f} "
        f"(target {'above' if payload.get('condition_operator') == 'gt' else 'below'} "
        f"${payload.get('condition_value'):,.2f}).\n"
        f"Swap: {payload.get('amount')} {payload.get('from_asset')} → {payload.get('to_asset')}"
        f"{_deposit_lines(payload)}"
    )


def _format_limit_failed(payload: dict) -> str:
    return (
        f"❌ <b>Limit order {html.escape(str(payload.get('limit_order_id', '')))} failed</b>\n\n"
        f"{html.escape(str(payload.get('reason', 'Unknown error')))}"
    )


def _format_dca_executed(payload: dict) -> str:
    message = (
        f"🔁 <b>DCA order placed</b>\n\n"
        f"{payload.get('amount')} {payload.get('from_asset')} → {payload.get('to_asset')}"
    )
    if payload.get("multiplier") and payload["multiplier"] != 1.0:
        message += f" (smart DCA x{payload['multiplier']})"
    message += _deposit_lines(payload)
    if payload.get("next_execution"):
        message += f"\n\nNext run: {payload['next_execution']:%Y-%m-%d %H:%M} UTC"
    return message


def _format_dca_failed(payload: dict) -> str:
    message = (
        f"⚠️ <b>DCA schedule {html.escape(str(payload.get('schedule_id', '')))} could not run</b>\n\n"
        f"{html.escape(str(payload.get('reason', 'Unknown error')))}"
    )
    if payload.get("deactivated"):
        message += "\n\nThe schedule has been paused. Create a new one once the issue is fixed."
    elif payload.get("skipped"):
        message += "\n\nThis run was skipped after repeated failures."
    return message


def _format_order_status(payload: dict) -> str:
    status = payload.get("status", "")
    message = (
        f"📦 <b>Order {html.escape(str(payload.get('order_id', '')))}</b>\n\n"
        f"{STATUS_MESSAGES.get(status, f'Status: {html.escape(status)}')}"
    )
    if payload.get("tx_hash"):
        message += f"\nTx: <code>{html.escape(payload['tx_hash'])}</code>"
    return message


def _format_price_alert(payload: dict) -> str:
    direction = "above" if payload.get("condition") == "gt" else "below"
    return (
        f"🔔 <b>{html.escape(str(payload.get('name') or 'Price alert'))}</b>\n\n"
        f"{html.escape(str(payload.get('coin', '')))} is now ${payload.get('price'):,.2f}, "
        f"{direction} your target of ${payload.get('target_price'):,.2f}.\n"
        f"This alert is now off."
    )


FORMATTERS = {
    "limit_triggered": _format_limit_triggered,
    "limit_failed": _format_limit_failed,
    "dca_executed": _format_dca_executed,
    "dca_failed": _format_dca_failed,
    "order_status": _format_order_status,
    "price_alert": _format_price_alert,
}


def format_notification(kind: str, payload: dict) -> str:
    return FORMATTERS[kind](payload)


class Notifier:
    def __init__(self, db_service: DatabaseService, telegram_bot=None, send_timeout: Optional[float] = None):
        self.db = db_service
        self.telegram_bot = telegram_bot
        self.send_timeout = send_timeout or config.HTTP_TIMEOUT_SECONDS

    def set_telegram_bot(self, telegram_bot):
        """Set telegram bot reference after initialization."""
        self.telegram_bot = telegram_bot

    async def resolve_chat_id(self, user_id: str) -> Optional[int]:
        """Telegram chat id for an owner: 'telegram:<id>' or a linked user record."""
        if not user_id:
            return None
        if user_id.startswith(TELEGRAM_PREFIX):
            return int(user_id[len(TELEGRAM_PREFIX):])
        user = await self.db.get_user(user_id)
        if user and user.get("tg_user_id"):
            return user["tg_user_id"]
        return None

    async def notify(self, user_id: str, kind: str, payload: dict) -> dict:
        """
        Send a notification.

        Returns:
            {"success": True} or {"success": False, "error": "..."}
        """
        if kind not in FORMATTERS:
            return {"success": False, "error": f"Unknown notification kind: {kind}"}

        if not self.telegram_bot or not getattr(self.telegram_bot, "client", None):
            logger.warning(f"No telegram bot, can't notify user {user_id}")
            return {"success": False, "error": "Telegram bot not available"}

        try:
            chat_id = await self.resolve_chat_id(user_id)
            if chat_id is None:
                logger.info(f"User {user_id} has no linked Telegram account, skipping {kind}")
                return {"success": False, "error": "No Telegram chat for user"}

            await asyncio.wait_for(
                self.telegram_bot.client.send_message(
                    chat_id,
                    format_notification(kind, payload),
                    parse_mode="html",
                ),
                timeout=self.send_timeout,
            )
            return {"success": True}
        except asyncio.TimeoutError:
            logger.error(f"Timed out notifying user {user_id} ({kind}) after {self.send_timeout}s")
            return {"success": False, "error": "Telegram send timed out"}
        except Exception as e:
            logger.error(f"Failed to notify user {user_id} ({kind}): {e}")
            return {"success": False, "error": str(e)}
