"""
Telegram bot for SwapSmith.
Private chat only. Text and voice messages are parsed into swaps, checkouts,
limit orders and DCA schedules; swaps are confirmed with reply-keyboard buttons.
"""
import logging
from typing import Optional

from telethon import TelegramClient, events, Button
from telethon.sessions import StringSession

from .config import config as app_config
from .database import DatabaseService
from .errors import SwapSmithError
from .intent import parse_user_command, transcribe_audio
from .models import ParsedCommand, WEEKDAYS, infer_network
from .order_monitor import OrderMonitor
from .orders import cancel_limit_order, place_dca_schedule, place_limit_order, place_swap_order
from .sideshift_client import SideShiftClient

logger = logging.getLogger(__name__)

HISTORY_TURNS = 6  # Parser context per user (messages, not pairs)

CONFIRM_TEXT = "✅ Place Order"
CANCEL_TEXT = "❌ Cancel"


class TelegramBot:
    def __init__(
        self,
        db_service: DatabaseService,
        sideshift: SideShiftClient,
        order_monitor: Optional[OrderMonitor] = None,
    ):
        self.db = db_service
        self.sideshift = sideshift
        self.order_monitor = order_monitor
        # Use StringSession (in-memory) to avoid file-based session conflicts during deploys
        self.client = TelegramClient(
            StringSession(),
            app_config.TELEGRAM_API_ID,
            app_config.TELEGRAM_API_HASH
        )
        self.bot_username: Optional[str] = None
        self._menu_context: dict = {}  # Track pending confirmations per user
        self._history: dict = {}  # Recent parser conversation per user

        # Register handlers
        self._register_handlers()

    def _register_handlers(self):
        """Register message handlers."""

        @self.client.on(events.NewMessage(incoming=True, func=lambda e: e.is_private))
        async def handle_private_message(event):
            """Handle all private messages."""
            await self._handle_message(event)

    def _get_user_id(self, tg_user_id: int) -> str:
        """Owner id used for orders created from Telegram."""
        return f"telegram:{tg_user_id}"

    def _remember(self, tg_user_id: int, role: str, content: str):
        history = self._history.setdefault(tg_user_id, [])
        history.append({"role": role, "content": content})
        del history[:-HISTORY_TURNS]

    # =========================================================================
    # MESSAGE ROUTING
    # =========================================================================

    async def _handle_message(self, event):
        """Process incoming private messages."""
        tg_user_id = event.sender_id
        message_text = (event.message.message or "").strip()

        if getattr(event.message, "voice", None):
            message_text = await self._transcribe_voice(event)
            if not message_text:
                return

        logger.info(f"Received message from {tg_user_id}: {message_text[:50]}...")

        user = None
        try:
            sender = await event.get_sender()
            user = await self.db.get_or_create_user(
                user_id=self._get_user_id(tg_user_id),
                tg_user_id=tg_user_id,
                tg_username=getattr(sender, "username", None),
            )
        except Exception as e:
            logger.error(f"Error ensuring user exists for {tg_user_id}: {e}")

        if await self._handle_menu_button(event, tg_user_id, message_text):
            return

        # Slash commands always override any pending confirmation
        if message_text.startswith('/'):
            self._menu_context.pop(tg_user_id, None)
            await self._handle_command(event, tg_user_id, message_text)
            return

        context = self._menu_context.pop(tg_user_id, None)
        if context and context.get('awaiting_input') == 'swap_confirm':
            await self._handle_swap_confirmation(event, tg_user_id, message_text, context)
            return

        await self._process_natural_language(event, tg_user_id, message_text, user)

    async def _transcribe_voice(self, event) -> Optional[str]:
        try:
            audio = await event.message.download_media(file=bytes)
            text = await transcribe_audio(audio, "voice.ogg")
        except RuntimeError as e:
            logger.error(f"Voice transcription failed: {e}")
            await event.reply("⚠️ Sorry, I couldn't understand that voice message.")
            return None
        if text:
            await event.reply(f"🎙️ <i>{text}</i>", parse_mode='html')
        return text

    async def _handle_menu_button(self, event, tg_user_id: int, message_text: str) -> bool:
        if message_text == "🔄 Swap":
            await event.reply("Tell me what to swap, e.g. <code>Swap 0.1 ETH for BTC</code>", parse_mode='html')
            return True
        if message_text == "🎯 Limit Order":
            await event.reply("e.g. <code>Swap 1 ETH for BTC if BTC drops below 40k</code>", parse_mode='html')
            return True
        if message_text == "🔁 DCA":
            await event.reply("e.g. <code>Buy 50 USDC of ETH every monday</code>", parse_mode='html')
            return True
        if message_text == "📦 My Orders":
            await self._handle_orders(event, tg_user_id)
            return True
        if message_text == "📜 History":
            await self._handle_history(event, tg_user_id)
            return True
        if message_text == "❓ Help":
            await self._show_main_menu(event)
            return True
        return False

    async def _handle_command(self, event, tg_user_id: int, message_text: str):
        """Handle slash commands."""
        parts = message_text.split(maxsplit=1)
        command = parts[0].lower().split('@')[0]  # Handle /cmd@botname
        args = parts[1] if len(parts) > 1 else ""

        if command == '/start':
            await self._handle_start(event, tg_user_id)
        elif command == '/help' or command == '/menu':
            await self._show_main_menu(event)
        elif command == '/history':
            await self._handle_history(event, tg_user_id)
        elif command == '/status':
            await self._handle_status(event, tg_user_id, args)
        elif command == '/orders':
            await self._handle_orders(event, tg_user_id)
        elif command == '/cancel':
            await self._handle_cancel(event, tg_user_id, args)
        elif command == '/wallet':
            await self._handle_wallet(event, tg_user_id, args)
        elif command == '/clear':
            self._history.pop(tg_user_id, None)
            await event.reply("🗑️ Conversation cleared.", buttons=Button.clear())
        else:
            await event.reply("Unknown command. Send /help for the menu.")

    # =========================================================================
    # COMMANDS
    # =========================================================================

    async def _handle_start(self, event, tg_user_id: int):
        await event.reply(
            "👋 <b>Welcome to SwapSmith</b>\n\n"
            "Swap across chains by just saying what you want:\n"
            "• <code>Swap 0.1 ETH for BTC</code>\n"
            "• <code>Swap 1 ETH for BTC if BTC drops below 40k</code>\n"
            "• <code>Buy 50 USDC of ETH every monday</code>\n"
            "• <code>I need 50 USDC on polygon</code>\n\n"
            "Set your receiving address with /wallet &lt;address&gt;.",
            parse_mode='html',
        )
        await self._show_main_menu(event)

    async def _show_main_menu(self, event):
        """Show the main menu."""
        buttons = [
            [Button.text("🔄 Swap", resize=True), Button.text("🎯 Limit Order", resize=True)],
            [Button.text("🔁 DCA", resize=True), Button.text("📦 My Orders", resize=True)],
            [Button.text("📜 History", resize=True), Button.text("❓ Help", resize=True)],
        ]
        await event.reply(
            "🤖 <b>SwapSmith Menu</b>\n\n"
            "Commands: /history, /status [id], /orders, /cancel &lt;id&gt;, /wallet &lt;address&gt;, /clear",
            buttons=buttons,
            parse_mode='html',
        )

    async def _handle_wallet(self, event, tg_user_id: int, args: str):
        user_id = self._get_user_id(tg_user_id)
        address = args.strip()
        if not address:
            user = await self.db.get_user(user_id)
            current = user.get("wallet_address") if user else None
            if current:
                await event.reply(f"Your receiving address: <code>{current}</code>", parse_mode='html')
            else:
                await event.reply("No receiving address set. Use /wallet &lt;address&gt;.", parse_mode='html')
            return
        await self.db.set_wallet_address(user_id, address)
        await event.reply(f"✅ Receiving address set to <code>{address}</code>", parse_mode='html')

    async def _handle_history(self, event, tg_user_id: int):
        entries = await self.db.list_swap_history(user_id=self._get_user_id(tg_user_id), limit=10)
        if not entries:
            await event.reply("You have no swaps yet.")
            return
        lines = ["📜 <b>Recent swaps</b>\n"]
        for entry in entries:
            lines.append(
                f"• {entry['from_amount']} {entry['from_asset']} → {entry['to_asset']} "
                f"<i>{entry['status']}</i> (<code>{entry['sideshift_order_id']}</code>)"
            )
        await event.reply("\n".join(lines), parse_mode='html')

    async def _handle_status(self, event, tg_user_id: int, args: str):
        order_id = args.strip()
        if not order_id:
            entries = await self.db.list_swap_history(user_id=self._get_user_id(tg_user_id), limit=1)
            if not entries:
                await event.reply("Usage: /status &lt;order id&gt;", parse_mode='html')
                return
            order_id = entries[0]["sideshift_order_id"]

        try:
            if self.order_monitor:
                entry = await self.order_monitor.reconcile(order_id)
            else:
                entry = await self.db.get_swap_history_entry(order_id)
        except SwapSmithError as e:
            await event.reply(f"⚠️ Could not check order status: {e.message}")
            return

        if not entry:
            await event.reply(f"Order <code>{order_id}</code> not found.", parse_mode='html')
            return
        message = (
            f"📦 <b>Order</b> <code>{entry['sideshift_order_id']}</code>\n"
            f"{entry['from_amount']} {entry['from_asset']} → {entry['to_asset']}\n"
            f"Status: <b>{entry['status']}</b>"
        )
        if entry.get("tx_hash"):
            message += f"\nTx: <code>{entry['tx_hash']}</code>"
        await event.reply(message, parse_mode='html')

    async def _handle_orders(self, event, tg_user_id: int):
        owner = self._get_user_id(tg_user_id)
        limit_orders = await self.db.list_limit_orders_by_owner(owner, active_only=True)
        schedules = await self.db.list_dca_schedules_by_owner(owner, active_only=True)
        if not limit_orders and not schedules:
            await event.reply("You have no open limit orders or DCA schedules.")
            return

        lines = []
        if limit_orders:
            lines.append("🎯 <b>Limit orders</b>")
            for order in limit_orders:
                direction = "above" if order["condition_operator"] == "gt" else "below"
                lines.append(
                    f"• <code>{order['_id']}</code> {order['amount']} {order['from_asset']} → {order['to_asset']} "
                    f"when {order['condition_asset']} {direction} ${order['condition_value']:,.2f} ({order['status']})"
                )
        if schedules:
            lines.append("\n🔁 <b>DCA schedules</b>")
            for schedule in schedules:
                lines.append(
                    f"• <code>{schedule['_id']}</code> {schedule['amount']} {schedule['from_asset']} → "
                    f"{schedule['to_asset']} {schedule['frequency']}, next {schedule['next_execution']:%Y-%m-%d %H:%M} UTC"
                )
        lines.append("\nCancel with /cancel &lt;id&gt;")
        await event.reply("\n".join(lines), parse_mode='html')

    async def _handle_cancel(self, event, tg_user_id: int, args: str):
        item_id = args.strip()
        if not item_id:
            await event.reply("Usage: /cancel &lt;id&gt;", parse_mode='html')
            return
        owner = self._get_user_id(tg_user_id)
        if await cancel_limit_order(self.db, item_id, owner):
            await event.reply(f"🚫 Limit order <code>{item_id}</code> cancelled.", parse_mode='html')
        elif await self.db.cancel_dca_schedule(item_id, owner):
            await event.reply(f"🚫 DCA schedule <code>{item_id}</code> stopped.", parse_mode='html')
        else:
            await event.reply("Nothing to cancel with that id (it may already be executing or finished).")

    # =========================================================================
    # NATURAL LANGUAGE
    # =========================================================================

    async def _process_natural_language(self, event, tg_user_id: int, message_text: str, user: Optional[dict]):
        parsed = await parse_user_command(message_text, self._history.get(tg_user_id))
        self._remember(tg_user_id, "user", message_text)

        if not parsed.success:
            errors = "\n".join(f"• {e}" for e in parsed.validationErrors) or "• Please rephrase your request"
            await event.reply(f"🤔 I couldn't process that:\n{errors}")
            return
        self._remember(tg_user_id, "assistant", parsed.parsedMessage or parsed.intent)

        settle_address = parsed.settleAddress or (user or {}).get("wallet_address")
        try:
            if parsed.intent == "swap":
                await self._offer_swap(event, tg_user_id, parsed, settle_address)
            elif parsed.intent == "checkout":
                await self._create_checkout(event, parsed, settle_address)
            elif parsed.intent == "limit_order":
                await self._create_limit_order(event, tg_user_id, parsed, settle_address)
            elif parsed.intent == "dca":
                await self._create_dca(event, tg_user_id, parsed, settle_address)
        except SwapSmithError as e:
            logger.warning(f"Request from {tg_user_id} failed: {e.message}")
            await event.reply(f"❌ {e.message}", buttons=Button.clear())

    async def _require_address(self, event, settle_address: Optional[str]) -> bool:
        if settle_address:
            return True
        await event.reply(
            "I need an address to send funds to. Set one with /wallet &lt;address&gt; and try again.",
            parse_mode='html',
        )
        return False

    async def _offer_swap(self, event, tg_user_id: int, parsed: ParsedCommand, settle_address: Optional[str]):
        if not await self._require_address(event, settle_address):
            return
        from_chain = parsed.fromChain or infer_network(parsed.fromAsset)
        to_chain = parsed.toChain or infer_network(parsed.toAsset)
        quote = await self.sideshift.create_quote(parsed.fromAsset, from_chain, parsed.toAsset, to_chain, parsed.amount)

        self._menu_context[tg_user_id] = {
            'awaiting_input': 'swap_confirm',
            'quote_id': quote.id,
            'settle_address': settle_address,
        }
        await event.reply(
            f"💱 <b>Quote</b>\n\n"
            f"Send: {quote.depositAmount} {quote.depositCoin} ({quote.depositNetwork})\n"
            f"Receive: {quote.settleAmount} {quote.settleCoin} ({quote.settleNetwork})\n"
            f"Rate: {quote.rate}\n"
            f"To: <code>{settle_address}</code>\n\n"
            f"Place the order?",
            buttons=[
                [Button.text(CONFIRM_TEXT, resize=True, single_use=True)],
                [Button.text(CANCEL_TEXT, resize=True, single_use=True)],
            ],
            parse_mode='html',
        )

    async def _handle_swap_confirmation(self, event, tg_user_id: int, message_text: str, context: dict):
        if message_text == CANCEL_TEXT or message_text.lower() == "cancel":
            await event.reply("Swap cancelled.", buttons=Button.clear())
            return
        if message_text != CONFIRM_TEXT and message_text.lower() not in ("yes", "confirm"):
            await event.reply(f"Please tap {CONFIRM_TEXT} or {CANCEL_TEXT}.")
            self._menu_context[tg_user_id] = context
            return

        try:
            order = await place_swap_order(
                self.db,
                self.sideshift,
                owner=self._get_user_id(tg_user_id),
                quote_id=context['quote_id'],
                settle_address=context['settle_address'],
                refund_address=context['settle_address'],
            )
        except SwapSmithError as e:
            await event.reply(f"❌ Could not place order: {e.message}", buttons=Button.clear())
            return

        message = (
            f"✅ <b>Order placed</b>\n\n"
            f"Send <b>{order.depositAmount} {order.depositCoin}</b> ({order.depositNetwork}) to:\n"
            f"<code>{order.depositAddress}</code>\n"
        )
        if order.depositMemo:
            message += f"Memo: <code>{order.depositMemo}</code>\n"
        message += f"\nOrder ID: <code>{order.id}</code>\nI'll message you as the swap progresses."
        await event.reply(message, buttons=Button.clear(), parse_mode='html')

    async def _create_checkout(self, event, parsed: ParsedCommand, settle_address: Optional[str]):
        if not await self._require_address(event, settle_address):
            return
        network = parsed.settleNetwork or infer_network(parsed.settleAsset)
        checkout = await self.sideshift.create_checkout(parsed.settleAsset, network, parsed.settleAmount, settle_address)
        await event.reply(
            f"💳 <b>Payment link</b>\n\n"
            f"Receive {checkout.settleAmount} {checkout.settleCoin} ({checkout.settleNetwork})\n"
            f"{checkout.url}",
            parse_mode='html',
        )

    async def _create_limit_order(self, event, tg_user_id: int, parsed: ParsedCommand, settle_address: Optional[str]):
        if not await self._require_address(event, settle_address):
            return
        order = await place_limit_order(
            self.db,
            owner=self._get_user_id(tg_user_id),
            from_asset=parsed.fromAsset,
            to_asset=parsed.toAsset,
            amount=parsed.amount,
            condition_operator=parsed.conditionOperator,
            condition_value=parsed.conditionValue,
            settle_address=settle_address,
            condition_asset=parsed.conditionAsset,
            from_chain=parsed.fromChain,
            to_chain=parsed.toChain,
        )
        direction = "above" if order["condition_operator"] == "gt" else "below"
        await event.reply(
            f"🎯 <b>Limit order created</b>\n\n"
            f"{order['amount']} {order['from_asset']} → {order['to_asset']} when "
            f"{order['condition_asset']} goes {direction} ${order['condition_value']:,.2f}\n"
            f"ID: <code>{order['_id']}</code>",
            parse_mode='html',
        )

    async def _create_dca(self, event, tg_user_id: int, parsed: ParsedCommand, settle_address: Optional[str]):
        if not await self._require_address(event, settle_address):
            return
        schedule = await place_dca_schedule(
            self.db,
            owner=self._get_user_id(tg_user_id),
            from_asset=parsed.fromAsset,
            to_asset=parsed.toAsset,
            amount=parsed.amount,
            frequency=parsed.frequency,
            settle_address=settle_address,
            day_of_week=parsed.dayOfWeek,
            day_of_month=parsed.dayOfMonth,
            from_chain=parsed.fromChain,
            to_chain=parsed.toChain,
        )
        when = schedule["frequency"]
        if schedule["day_of_week"] is not None:
            when += f" on {WEEKDAYS[schedule['day_of_week']].title()}"
        elif schedule["day_of_month"]:
            when += f" on day {schedule['day_of_month']}"
        await event.reply(
            f"🔁 <b>DCA schedule created</b>\n\n"
            f"{schedule['amount']} {schedule['from_asset']} → {schedule['to_asset']} {when}\n"
            f"First run: {schedule['next_execution']:%Y-%m-%d %H:%M} UTC\n"
            f"ID: <code>{schedule['_id']}</code>",
            parse_mode='html',
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def connect(self):
        """Log in as the bot without blocking."""
        await self.client.start(bot_token=app_config.TELEGRAM_BOT_TOKEN)
        me = await self.client.get_me()
        self.bot_username = me.username
        logger.info(f"Telegram bot connected as @{self.bot_username}")

    async def start(self):
        """Start the Telegram bot."""
        await self.connect()
        # Keep running
        await self.client.run_until_disconnected()

    async def stop(self):
        """Stop the Telegram bot."""
        await self.client.disconnect()
        logger.info("Telegram bot stopped")
