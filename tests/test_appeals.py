import pytest

from explainguard.enforcement.appeals import AppealHandler, extract_item_id
from explainguard.enforcement.models import AppealMessage, AppealOutcome
from explainguard.enforcement.orchestrator import EscalationOrchestrator
from explainguard.enforcement.records import EnforcementRepository
from explainguard.errors import StateStoreError, TransientError
from explainguard.services.state_store import MemoryStateStore

EXPLANATION = "This map shows the borders of Europe in 1444, the start date of the campaign game."
SUBJECT = "Explanation Reinstatement Request"


def _appeal(body, *, sender="alice", subject=SUBJECT):
    return AppealMessage(conversation_id="conv1", sender=sender, subject=subject, body=body)


async def _removed_by_core(orchestrator, platform, scheduler, clock):
    item = platform.add_item("abc123")
    await orchestrator.on_item_submitted(item.id)
    clock.advance(minutes=5)
    await scheduler.fire_due(orchestrator, clock.now())
    clock.advance(minutes=10)
    await scheduler.fire_due(orchestrator, clock.now())
    assert platform.items[item.id].removed
    return item


@pytest.mark.parametrize(
    "text, expected",
    [
        ("https://www.reddit.com/r/pics/comments/1abc2de/some_title/", "1abc2de"),
        ("https://redd.it/xyz789", "xyz789"),
        ("my post is abc123, thanks", "abc123"),
        ("fullname t3_abc123", "abc123"),
        ("short link redd.it/aaa111 and /comments/bbb222/", "bbb222"),
        ("ids qqq111 then rrr222", "qqq111"),
        ("hello there friend", None),
        ("toolongid12345", None),
        ("", None),
        (None, None),
    ],
)
def test_extract_item_id(text, expected):
    assert extract_item_id(text) == expected


async def test_scenario_appeal_after_core_removal(orchestrator, appeals, platform, scheduler, records, dispatcher, clock):
    item = await _removed_by_core(orchestrator, platform, scheduler, clock)
    clock.advance(minutes=4)
    platform.add_comment(item.id, EXPLANATION)
    clock.advance(minutes=1)

    outcome = await appeals.handle(_appeal(f"I added it: https://www.reddit.com/r/test/comments/{item.id}/a_picture/"))

    assert outcome is AppealOutcome.REINSTATED
    assert not platform.items[item.id].removed
    assert platform.bot_annotations(item.id) == []
    record = await records.load(item.id)
    assert record.approved is not None and not record.touched
    assert "reinstated" in platform.replies[-1][1].lower()
    assert platform.archived == ["conv1"]
    assert "item_reinstated" in dispatcher.events()


async def test_scenario_human_removal_is_never_overridden(appeals, platform):
    item = platform.add_item("abc123", removed=True)
    platform.add_comment(item.id, EXPLANATION)

    outcome = await appeals.handle(_appeal("please reinstate abc123"))

    assert outcome is AppealOutcome.NOT_REMOVED_BY_CORE
    assert platform.items[item.id].removed
    assert platform.called("approve_item") == []
    assert "not removed by the bot" in platform.replies[-1][1].lower()


async def test_report_only_record_does_not_authorize_reinstatement(appeals, platform, records):
    item = platform.add_item("abc123", removed=True)
    platform.add_comment(item.id, EXPLANATION)
    await records.mark_removed(item.id, visibility_removed=False)

    assert await appeals.handle(_appeal("abc123")) is AppealOutcome.NOT_REMOVED_BY_CORE
    assert platform.called("approve_item") == []


async def test_only_the_author_may_appeal(orchestrator, appeals, platform, scheduler, clock):
    item = await _removed_by_core(orchestrator, platform, scheduler, clock)
    platform.add_comment(item.id, EXPLANATION)

    outcome = await appeals.handle(_appeal("abc123", sender="mallory"))

    assert outcome is AppealOutcome.NOT_AUTHOR
    assert platform.items[item.id].removed
    assert "only the author" in platform.replies[-1][1].lower()


async def test_author_match_is_case_insensitive(orchestrator, appeals, platform, scheduler, clock):
    item = await _removed_by_core(orchestrator, platform, scheduler, clock)
    platform.add_comment(item.id, EXPLANATION)
    assert await appeals.handle(_appeal("abc123", sender="ALICE")) is AppealOutcome.REINSTATED


async def test_invalid_explanation_reply_names_the_reason(orchestrator, appeals, platform, scheduler, clock):
    item = await _removed_by_core(orchestrator, platform, scheduler, clock)
    platform.add_comment(item.id, "it is a map")

    outcome = await appeals.handle(_appeal("abc123"))

    assert outcome is AppealOutcome.NO_VALID_EXPLANATION
    reply = platform.replies[-1][1]
    assert "too short" in reply.lower()
    assert "50" in reply
    assert platform.items[item.id].removed


async def test_missing_id_not_found_and_already_visible(appeals, platform):
    assert await appeals.handle(_appeal("please help")) is AppealOutcome.NO_ITEM_ID

    assert await appeals.handle(_appeal("zzz999")) is AppealOutcome.ITEM_NOT_FOUND
    assert "zzz999" in platform.replies[-1][1]

    platform.add_item("abc123")
    assert await appeals.handle(_appeal("abc123")) is AppealOutcome.ALREADY_APPROVED
    assert platform.archived == ["conv1"]
    assert len(platform.replies) == 3


async def test_unrelated_messages_are_ignored(appeals, platform, config):
    assert await appeals.handle(_appeal("abc123", subject="Question about the rules")) is AppealOutcome.IGNORED
    config.update(appeals_enabled=False)
    assert await appeals.handle(_appeal("abc123")) is AppealOutcome.IGNORED
    assert platform.replies == []


async def test_failures_reply_with_error_and_raise_core_error(orchestrator, appeals, platform, scheduler, dispatcher, clock):
    item = await _removed_by_core(orchestrator, platform, scheduler, clock)
    platform.failures["list_annotations"] = TransientError("503")

    outcome = await appeals.handle(_appeal(item.id))

    assert outcome is AppealOutcome.ERROR
    assert "error occurred" in platform.replies[-1][1].lower()
    assert dispatcher.events()[-1] == "core_error"
    assert platform.items[item.id].removed


async def test_archiving_can_be_disabled(orchestrator, appeals, platform, scheduler, clock, config):
    item = await _removed_by_core(orchestrator, platform, scheduler, clock)
    platform.add_comment(item.id, EXPLANATION)
    config.update(auto_archive_appeals=False)
    assert await appeals.handle(_appeal(item.id)) is AppealOutcome.REINSTATED
    assert platform.archived == []


async def test_appeal_succeeds_when_approval_cannot_be_recorded(platform, scheduler, dispatcher, clock, config):
    class NoApprovalStore(MemoryStateStore):
        async def set(self, key, value, ttl_seconds):
            if key.startswith("approved:"):
                raise StateStoreError("down")
            await super().set(key, value, ttl_seconds)

    orchestrator = EscalationOrchestrator(
        platform=platform,
        records=EnforcementRepository(NoApprovalStore(clock=clock.time), clock=clock.now),
        scheduler=scheduler,
        notifier=dispatcher,
        config_provider=config,
    )
    item = await _removed_by_core(orchestrator, platform, scheduler, clock)
    platform.add_comment(item.id, EXPLANATION)

    outcome = await AppealHandler(orchestrator).handle(_appeal(item.id))

    assert outcome is AppealOutcome.REINSTATED
    assert not platform.items[item.id].removed
    assert "reinstated" in platform.replies[-1][1].lower()
    assert "core_error" not in dispatcher.events()


async def test_failed_appeal_reinstatement_does_not_flag(orchestrator, appeals, platform, scheduler, dispatcher, clock):
    item = await _removed_by_core(orchestrator, platform, scheduler, clock)
    platform.add_comment(item.id, "x" * 60)
    platform.failures["approve_item"] = TransientError("timeout")

    assert await appeals.handle(_appeal(item.id)) is AppealOutcome.ERROR
    assert platform.reports == []
    assert "explanation_flagged_for_review" not in dispatcher.events()
