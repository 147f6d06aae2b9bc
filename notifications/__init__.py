"""Best-effort outbound notifications to admins, contributors and developers.

Delivery failures are logged and swallowed: a notification never fails the
operation that triggered it. Admin broadcasts fan out concurrently with a
bounded number of in-flight sends.
"""
import asyncio
import logging
import re
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import requests

from config import settings_conf

logger = logging.getLogger(__name__)

_MARKDOWN_SPECIAL = re.compile(r'([_*\[\]()~`>#+\-=|{}.!\\])')

class NotificationError(Exception):
    """Raised by a gateway when a message cannot be delivered."""
    pass

def escape_markdown(text: Any) -> str:
    """Escape text for Telegram MarkdownV2."""
    if text is None:
        return ''
    return _MARKDOWN_SPECIAL.sub(r'\\\1', str(text))

def format_fiat(amount: Any) -> str:
    """Format a fiat amount with two decimals, escaped for MarkdownV2."""
    return escape_markdown(f"{Decimal(str(amount or 0)):.2f}")

class TelegramGateway:
    """Sends messages through the Telegram Bot API."""

    def __init__(self, bot_token: Optional[str] = None, api_url: Optional[str] = None,
                 timeout: int = 10):
        self.bot_token = bot_token if bot_token is not None else settings_conf['notification_bot_token']
        self.api_url = (api_url or settings_conf['notification_api_url']).rstrip('/')
        self.timeout = timeout
        self.session = requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token)

    def send_message(self, recipient_id: int, message: str) -> None:
        """Deliver ``message`` to ``recipient_id``.

        Raises:
            NotificationError: If the Bot API rejects the message or is unreachable
        """
        try:
            response = self.session.post(
                f"{self.api_url}/bot{self.bot_token}/sendMessage",
                json={
                    'chat_id': recipient_id,
                    'text': message,
                    'parse_mode': 'MarkdownV2'
                },
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise NotificationError(f"Bot API unreachable: {e}") from e

        if response.status_code != 200:
            raise NotificationError(f"Bot API returned HTTP {response.status_code}: {response.text[:200]}")

def _render_new_bounty(data: Dict[str, Any]) -> str:
    return (
        "🆕 *New feature request\\!*\n\n"
        f"📝 *Title:* {escape_markdown(data.get('title'))}\n"
        f"📄 {escape_markdown((data.get('description') or '')[:200])}\n\n"
        f"👤 By: {escape_markdown(data.get('creator_name') or data.get('creator_id'))}\n\n"
        "Review it in the moderation queue\\."
    )

def _render_developer_claim(data: Dict[str, Any]) -> str:
    return (
        "👷 *A developer wants to take a bounty\\!*\n\n"
        f"📝 *Bounty:* {escape_markdown(data.get('title'))}\n"
        f"💰 Funded: {format_fiat(data.get('total_fiat'))}\n"
        f"👤 Dev: {escape_markdown(data.get('developer_name') or data.get('developer_id'))}\n\n"
        "Approve or reject the claim in the moderation queue\\."
    )

def _render_large_contribution(data: Dict[str, Any]) -> str:
    bounty = data.get('bounty') or {}
    payment = data.get('payment') or {}
    return (
        "💰 *Large contribution received\\!*\n\n"
        f"📝 *Bounty:* {escape_markdown(bounty.get('title', 'N/A'))}\n"
        f"💵 Amount: {format_fiat(data.get('amount'))}\n"
        f"👤 By: {escape_markdown(payment.get('payer_name') or payment.get('payer_id'))}"
    )

def _render_bounty_completed(data: Dict[str, Any]) -> str:
    return (
        "✅ *Bounty marked as completed\\!*\n\n"
        f"📝 *Bounty:* {escape_markdown(data.get('title'))}\n"
        f"💰 Funded: {format_fiat(data.get('total_fiat'))}\n"
        f"👤 Dev: {escape_markdown(data.get('developer_name') or data.get('developer_id'))}\n\n"
        "The developer is waiting for the payout\\."
    )

def _render_bounty_approved(data: Dict[str, Any]) -> str:
    return (
        "✅ *Your suggestion was approved\\!*\n\n"
        f"📝 *{escape_markdown(data.get('title'))}*\n\n"
        "It is now open for community funding\\!"
    )

def _render_bounty_rejected(data: Dict[str, Any]) -> str:
    reason = data.get('review_notes')
    return (
        "❌ *Your suggestion was not approved*\n\n"
        f"📝 *{escape_markdown(data.get('title'))}*\n\n"
        + (f"Reason: {escape_markdown(reason)}" if reason else "Contact support for more information\\.")
    )

def _render_contribution_confirmed(data: Dict[str, Any]) -> str:
    bounty = data.get('bounty') or {}
    asset = data.get('asset')
    native = data.get('native_amount')
    if asset in ('LBTC', 'USDT') and native is not None:
        value = f"{escape_markdown(native)} {asset} \\(\\~{format_fiat(data.get('amount'))}\\)"
    else:
        value = format_fiat(data.get('amount'))
    return (
        "✅ *Contribution confirmed\\!*\n\n"
        f"📝 *Bounty:* {escape_markdown(bounty.get('title', 'N/A'))}\n"
        f"💰 Amount: {value}\n\n"
        "Thank you for supporting this bounty\\!"
    )

def _render_claim_approved(data: Dict[str, Any]) -> str:
    return (
        "✅ *You were approved to build this bounty\\!*\n\n"
        f"📝 *Bounty:* {escape_markdown(data.get('title'))}\n"
        f"💰 Funded: {format_fiat(data.get('total_fiat'))}\n\n"
        "Good luck with the development\\!"
    )

def _render_claim_rejected(data: Dict[str, Any]) -> str:
    return (
        "❌ *Your claim was not approved*\n\n"
        f"📝 *Bounty:* {escape_markdown(data.get('title'))}\n\n"
        "The bounty is open again\\."
    )

def _render_bounty_paid(data: Dict[str, Any]) -> str:
    return (
        "💰 *Bounty payout sent\\!*\n\n"
        f"📝 *Bounty:* {escape_markdown(data.get('title'))}\n"
        f"💵 Amount: {format_fiat(data.get('total_fiat'))}\n\n"
        "Thank you for your contribution\\!"
    )

TEMPLATES = {
    'new_bounty': _render_new_bounty,
    'developer_claim': _render_developer_claim,
    'large_contribution': _render_large_contribution,
    'bounty_completed': _render_bounty_completed,
    'bounty_approved': _render_bounty_approved,
    'bounty_rejected': _render_bounty_rejected,
    'contribution_confirmed': _render_contribution_confirmed,
    'claim_approved': _render_claim_approved,
    'claim_rejected': _render_claim_rejected,
    'bounty_paid': _render_bounty_paid,
}

class NotificationDispatcher:
    """Renders event messages and delivers them best-effort."""

    def __init__(
        self,
        gateway: Optional[TelegramGateway] = None,
        admin_ids: Optional[Iterable[int]] = None,
        concurrency: Optional[int] = None
    ):
        self.gateway = gateway or TelegramGateway()
        self.admin_ids: List[int] = list(
            admin_ids if admin_ids is not None else settings_conf['admin_ids']
        )
        self.concurrency = concurrency or settings_conf['notification_concurrency']

    @staticmethod
    def render(event: str, data: Dict[str, Any]) -> Optional[str]:
        """Render the message for ``event`` or None for unknown events."""
        template = TEMPLATES.get(event)
        if not template:
            logger.warning(f"No notification template for event {event}")
            return None
        return template(data)

    async def _deliver(self, recipient_id: int, message: str) -> bool:
        try:
            await asyncio.to_thread(self.gateway.send_message, recipient_id, message)
            return True
        except Exception as e:
            logger.warning(f"Failed to notify {recipient_id}: {e}")
            return False

    async def notify_user(self, recipient_id: Optional[int], event: str, data: Dict[str, Any]) -> bool:
        """Send one event message to one user. Returns whether it was delivered."""
        if not recipient_id:
            return False
        if not self.gateway.enabled:
            logger.info(f"Notification gateway not configured, skipping {event} for {recipient_id}")
            return False
        message = self.render(event, data)
        if message is None:
            return False
        return await self._deliver(recipient_id, message)

    async def notify_admins(self, event: str, data: Dict[str, Any]) -> int:
        """Broadcast one event message to every admin. Returns the delivered count."""
        if not self.admin_ids:
            return 0
        if not self.gateway.enabled:
            logger.info(f"Notification gateway not configured, skipping admin {event}")
            return 0
        message = self.render(event, data)
        if message is None:
            return 0

        semaphore = asyncio.Semaphore(self.concurrency)

        async def send(admin_id: int) -> bool:
            async with semaphore:
                return await self._deliver(admin_id, message)

        results = await asyncio.gather(*(send(admin_id) for admin_id in self.admin_ids))
        delivered = sum(1 for ok in results if ok)
        if delivered < len(results):
            logger.warning(f"Admin {event} notification reached {delivered}/{len(results)} admins")
        return delivered

__all__ = [
    'NotificationDispatcher',
    'TelegramGateway',
    'NotificationError',
    'escape_markdown',
    'TEMPLATES'
]
