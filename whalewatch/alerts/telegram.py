"""Telegram alerts for whale activity."""

import html
from collections.abc import Sequence

import httpx
import structlog

from ..core.interfaces import AlertSink
from ..core.types import DeltaResult, EntityKey, HolderRecord, TransferRecord
from ..engine.diff import significant_changes

logger = structlog.get_logger(__name__)

MAX_LISTED = 10
MAX_CONTEXT = 5


def _short(address: str) -> str:
    if len(address) <= 12:
        return address
    return f"{address[:6]}...{address[-4:]}"


def format_delta_alert(
    entity: EntityKey,
    delta: DeltaResult,
    threshold_pct: float,
    whales: Sequence[HolderRecord] = (),
    transfers: Sequence[TransferRecord] = (),
) -> str | None:
    """Render a delta as an HTML alert message.

    Only entered and exited holders and changes of at least threshold_pct
    percent are reported. Returns None when nothing qualifies.

    Args:
        entity: Token the delta belongs to
        delta: Result of comparing the two newest snapshots
        threshold_pct: Minimum absolute percent move worth listing
        whales: Current top holder cohort, appended as context
        transfers: Recent transfers; mints and burns are appended as context
    """
    significant = significant_changes(delta, threshold_pct)
    if not (delta.entered or delta.exited or significant):
        return None

    lines = [f"🐋 <b>Whale activity</b> <code>{html.escape(str(entity))}</code>"]

    if delta.entered:
        lines.append(f"\n<b>New holders ({len(delta.entered)})</b>")
        lines.extend(f"➕ <code>{_short(a)}</code>" for a in sorted(delta.entered)[:MAX_LISTED])

    if delta.exited:
        lines.append(f"\n<b>Exited holders ({len(delta.exited)})</b>")
        lines.extend(f"➖ <code>{_short(a)}</code>" for a in sorted(delta.exited)[:MAX_LISTED])

    if significant:
        lines.append(f"\n<b>Balance moves ≥ {threshold_pct:g}% ({len(significant)})</b>")
        ranked = sorted(
            significant.items(), key=lambda item: abs(item[1].change_percent), reverse=True
        )
        for address, change in ranked[:MAX_LISTED]:
            arrow = "🟢" if change.current_balance > change.previous_balance else "🔴"
            lines.append(
                f"{arrow} <code>{_short(address)}</code> "
                f"{change.previous_balance:,.2f} → {change.current_balance:,.2f} "
                f"({change.change_percent:+.2f}%)"
            )

    if whales:
        lines.append(f"\n<b>Top holders ({len(whales)})</b>")
        for holder in whales[:MAX_CONTEXT]:
            lines.append(
                f"🐳 <code>{_short(holder.address)}</code> "
                f"{holder.balance:,.2f} ({holder.percent_of_supply:.2f}%)"
            )

    supply_events = [t for t in transfers if t.kind != "transfer"]
    if supply_events:
        lines.append(f"\n<b>Mints and burns ({len(supply_events)})</b>")
        for transfer in supply_events[:MAX_CONTEXT]:
            if transfer.kind == "mint":
                icon, arrow, counterparty = "🪙", "→", transfer.to_address
            else:
                icon, arrow, counterparty = "🔥", "←", transfer.from_address
            lines.append(
                f"{icon} {transfer.kind} {transfer.amount:,.2f} {arrow} "
                f"<code>{_short(counterparty)}</code>"
            )

    return "\n".join(lines)


class NoopAlertSink(AlertSink):
    """Alert sink that only logs; used when Telegram is not configured."""

    async def push(self, message: str) -> None:
        logger.info("Whale alert (not delivered)", message=message)


class TelegramAlertSink(AlertSink):
    """Delivers whale alerts to Telegram admin chats."""

    API_ROOT = "https://api.telegram.org"

    def __init__(
        self,
        bot_token: str,
        admin_user_ids: list[int],
        session: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize Telegram alert sink.

        Args:
            bot_token: Telegram bot token
            admin_user_ids: Chats that receive every alert
            session: Optional HTTP client, owned and closed by the sink
        """
        self.bot_token = bot_token
        self.admin_user_ids = admin_user_ids
        self.session = session or httpx.AsyncClient()
        self.base_url = f"{self.API_ROOT}/bot{bot_token}"

        logger.info("Telegram alert sink ready", chats=len(admin_user_ids))

    async def push(self, message: str) -> None:
        """Send ``message`` to every admin chat.

        Delivery failures are logged per chat and never raised, so one
        blocked chat cannot silence the rest.
        """
        if not self.admin_user_ids:
            logger.warning("Whale alert dropped, no admin chats configured")
            return

        delivered = 0
        for chat_id in self.admin_user_ids:
            try:
                message_id = await self._send_message(chat_id, message)
            except (httpx.HTTPError, RuntimeError) as e:
                logger.error("Whale alert delivery failed", chat_id=chat_id, error=str(e))
                continue
            delivered += 1
            logger.debug("Whale alert delivered", chat_id=chat_id, message_id=message_id)

        logger.info(
            "Whale alert pushed",
            chats=len(self.admin_user_ids),
            delivered=delivered,
        )

    async def _send_message(self, chat_id: int, text: str) -> int | None:
        """Call sendMessage and return the Telegram message id."""
        payload = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        response = await self.session.post(f"{self.base_url}/sendMessage", json=payload)
        response.raise_for_status()

        body = response.json()
        if not body.get("ok"):
            raise RuntimeError(f"Telegram API error: {body.get('description', 'unknown')}")
        return (body.get("result") or {}).get("message_id")

    async def close(self) -> None:
        await self.session.aclose()
        logger.info("Telegram alert sink closed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
