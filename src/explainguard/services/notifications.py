from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

import aiohttp
import discord

from ..enforcement.config_schema import EnforcementConfig
from ..enforcement.models import Notification

log = logging.getLogger("explainguard.notifications")

FOOTER = "Explain Guard"

EVENT_TITLES = {
    "warning_issued": "Warning Issued",
    "item_removed": "Submission Removed",
    "item_reinstated": "Submission Reinstated",
    "explanation_flagged_for_review": "Explanation Flagged for Review",
    "core_error": "Bot Error",
}

# Discord embed colors (decimal); Slack uses its named attachment colors.
EVENT_COLORS = {
    "warning_issued": 0xFFA500,
    "item_removed": 0xFF0000,
    "item_reinstated": 0x00FF00,
    "explanation_flagged_for_review": 0xFFA500,
    "core_error": 0xFF0000,
}
SLACK_COLORS = {
    "warning_issued": "warning",
    "item_removed": "danger",
    "item_reinstated": "good",
    "explanation_flagged_for_review": "warning",
    "core_error": "danger",
}

MAX_FIELD = 1024


def _clip(text: str, limit: int = MAX_FIELD) -> str:
    text = text or "-"
    return text if len(text) <= limit else text[: limit - 1] + "…"


def build_embed(notification: Notification) -> discord.Embed:
    embed = discord.Embed(
        title=EVENT_TITLES.get(notification.event, notification.event),
        color=EVENT_COLORS.get(notification.event, 0x808080),
        timestamp=datetime.now(timezone.utc),
    )
    embed.add_field(name="User", value=_clip(f"u/{notification.author}"), inline=True)
    if notification.community:
        embed.add_field(name="Community", value=_clip(f"r/{notification.community}"), inline=True)
    if notification.item_url:
        embed.add_field(name="Submission", value=_clip(f"[View]({notification.item_url})"), inline=False)
    embed.add_field(name="Reason", value=_clip(notification.reason), inline=False)
    embed.set_footer(text=FOOTER)
    return embed


def build_slack_payload(notification: Notification) -> dict:
    fields = [
        {"title": "User", "value": f"u/{notification.author}", "short": True},
        {"title": "Item", "value": notification.item_id, "short": True},
        {"title": "Reason", "value": notification.reason, "short": False},
    ]
    if notification.item_url:
        fields.insert(2, {"title": "Submission", "value": f"<{notification.item_url}|View>", "short": False})
    return {
        "attachments": [
            {
                "color": SLACK_COLORS.get(notification.event, "#808080"),
                "title": EVENT_TITLES.get(notification.event, notification.event),
                "fields": fields,
                "footer": FOOTER,
                "ts": int(datetime.now(timezone.utc).timestamp()),
            }
        ]
    }


class NotificationDispatcher:
    """Routes enforcement events to moderator webhooks.

    Delivery is best-effort: failures are logged, never raised.
    """

    def __init__(
        self,
        config_provider: Callable[[], EnforcementConfig],
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._config_provider = config_provider
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=10))
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    def enabled_for(self, notification: Notification, config: EnforcementConfig) -> bool:
        return notification.event in config.notification_events

    async def notify(self, notification: Notification) -> None:
        try:
            config = self._config_provider()
            if not self.enabled_for(notification, config):
                log.debug("Event %s not enabled for notifications", notification.event)
                return
            if config.discord_webhook_url:
                await self._send_discord(notification, config.discord_webhook_url)
            if config.slack_webhook_url:
                await self._send_slack(notification, config.slack_webhook_url)
        except Exception:
            log.exception("Notification dispatch failed for %s", notification.event)

    async def _send_discord(self, notification: Notification, url: str) -> None:
        try:
            session = await self._get_session()
            webhook = discord.Webhook.from_url(url, session=session)
            await webhook.send(embed=build_embed(notification), username=FOOTER)
            log.info("Sent Discord notification for %s (%s)", notification.event, notification.item_id)
        except (discord.HTTPException, ValueError, aiohttp.ClientError):
            log.exception("Discord webhook delivery failed for %s", notification.event)

    async def _send_slack(self, notification: Notification, url: str) -> None:
        try:
            session = await self._get_session()
            async with session.post(url, json=build_slack_payload(notification)) as resp:
                if resp.status >= 400:
                    log.error("Slack webhook failed: HTTP %s", resp.status)
                    return
            log.info("Sent Slack notification for %s (%s)", notification.event, notification.item_id)
        except aiohttp.ClientError:
            log.exception("Slack webhook delivery failed for %s", notification.event)
