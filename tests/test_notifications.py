import discord

from explainguard.enforcement.config_schema import resolve_config
from explainguard.enforcement.models import Notification
from explainguard.services import notifications
from explainguard.services.notifications import NotificationDispatcher, build_embed, build_slack_payload

NOTE = Notification(
    event="item_removed",
    item_id="abc123",
    author="alice",
    reason="Item removed for missing explanation",
    item_url="https://www.reddit.com/r/pics/comments/abc123/",
    community="pics",
)


class FakeWebhook:
    sent: list = []

    async def send(self, **kwargs):
        FakeWebhook.sent.append(kwargs)


def _dispatcher(**overrides):
    config = resolve_config(overrides)
    return NotificationDispatcher(lambda: config)


def test_embed_carries_event_details():
    embed = build_embed(NOTE)
    assert embed.title == "Submission Removed"
    names = [f.name for f in embed.fields]
    assert names == ["User", "Community", "Submission", "Reason"]
    assert embed.fields[0].value == "u/alice"


def test_slack_payload():
    attachment = build_slack_payload(NOTE)["attachments"][0]
    assert attachment["color"] == "danger"
    assert [f["title"] for f in attachment["fields"]] == ["User", "Item", "Submission", "Reason"]


async def test_disabled_events_are_not_sent(monkeypatch):
    calls = []

    async def fake_discord(self, notification, url):
        calls.append(notification.event)

    monkeypatch.setattr(NotificationDispatcher, "_send_discord", fake_discord)
    dispatcher = _dispatcher(discord_webhook_url="https://discord.com/api/webhooks/1/x", notification_events=["item_removed"])

    await dispatcher.notify(NOTE)
    await dispatcher.notify(Notification("warning_issued", "abc123", "alice", "warned"))
    assert calls == ["item_removed"]


async def test_no_webhooks_configured_is_a_no_op(monkeypatch):
    async def boom(self, notification, url):
        raise AssertionError("should not send")

    monkeypatch.setattr(NotificationDispatcher, "_send_discord", boom)
    monkeypatch.setattr(NotificationDispatcher, "_send_slack", boom)
    await _dispatcher().notify(NOTE)


async def test_discord_delivery_uses_webhook(monkeypatch):
    FakeWebhook.sent = []
    monkeypatch.setattr(notifications.discord.Webhook, "from_url", lambda url, session: FakeWebhook())
    dispatcher = _dispatcher(discord_webhook_url="https://discord.com/api/webhooks/1/x")
    try:
        await dispatcher.notify(NOTE)
    finally:
        await dispatcher.close()
    assert len(FakeWebhook.sent) == 1
    assert isinstance(FakeWebhook.sent[0]["embed"], discord.Embed)


async def test_delivery_errors_never_propagate(monkeypatch):
    async def broken(self, notification, url):
        raise RuntimeError("webhook exploded")

    monkeypatch.setattr(NotificationDispatcher, "_send_slack", broken)
    dispatcher = _dispatcher(slack_webhook_url="https://hooks.slack.com/services/x")
    await dispatcher.notify(NOTE)
