from explainguard.enforcement.orchestrator import EscalationOrchestrator
from explainguard.enforcement.records import EnforcementRepository
from explainguard.errors import PermissionDeniedError, StateStoreError, TransientError
from explainguard.services.state_store import MemoryStateStore

EXPLANATION_80 = "This map shows the borders of Europe in 1444, the start date of the campaign game."


async def _warned(orchestrator, platform, scheduler, clock, **item_kw):
    item = platform.add_item(**item_kw)
    await orchestrator.on_item_submitted(item.id)
    clock.advance(minutes=5)
    await scheduler.fire_due(orchestrator, clock.now())
    return item


async def test_scenario_no_explanation_escalates_to_removal(orchestrator, platform, scheduler, records, dispatcher, clock):
    item = platform.add_item("abc123")
    evaluation = await orchestrator.on_item_submitted(item.id)
    assert evaluation.enforce
    assert scheduler.names() == ["check_warning"]

    clock.advance(minutes=5)
    assert await scheduler.fire_due(orchestrator, clock.now()) == ["check_warning"]
    warning = await records.get_warning(item.id)
    assert warning is not None
    assert [a.id for a in platform.bot_annotations(item.id)] == [warning.annotation_id]
    assert scheduler.names() == ["check_removal"]
    assert "warning_issued" in dispatcher.events()

    clock.advance(minutes=10)
    assert await scheduler.fire_due(orchestrator, clock.now()) == ["check_removal"]
    assert platform.items[item.id].removed
    removal = await records.get_removal(item.id)
    assert removal is not None and removal.visibility_removed
    # Warning annotation cleaned up; only the removal notice remains.
    assert [a.id for a in platform.bot_annotations(item.id)] == [removal.annotation_id]
    assert "message the moderators" in platform.bot_annotations(item.id)[0].body.lower()
    assert len(platform.called("remove_item")) == 1
    assert platform.reports == []
    assert "item_removed" in dispatcher.events()


async def test_scenario_explanation_during_warning_period(orchestrator, platform, scheduler, records, dispatcher, clock):
    item = await _warned(orchestrator, platform, scheduler, clock)
    assert await records.get_warning(item.id) is not None

    clock.advance(minutes=2)
    platform.add_comment(item.id, EXPLANATION_80)
    assert len(EXPLANATION_80) >= 80
    assert await orchestrator.sweep() == 1

    record = await records.load(item.id)
    assert record.approved is not None
    assert not record.touched
    assert platform.bot_annotations(item.id) == []
    assert "item_reinstated" in dispatcher.events()

    clock.advance(minutes=8)
    await scheduler.fire_due(orchestrator, clock.now())
    assert platform.called("remove_item") == []
    assert platform.called("approve_item") == []
    assert not platform.items[item.id].removed


async def test_explanation_before_grace_expiry_only_records_compliance(orchestrator, platform, scheduler, records, dispatcher, clock):
    item = platform.add_item()
    await orchestrator.on_item_submitted(item.id)
    clock.advance(minutes=3)
    platform.add_comment(item.id, EXPLANATION_80)
    clock.advance(minutes=2)
    await scheduler.fire_due(orchestrator, clock.now())

    record = await records.load(item.id)
    assert record.approved is not None
    assert record.warned is None
    assert platform.called("add_annotation") == []
    assert scheduler.jobs == []
    assert dispatcher.events() == []


async def test_intake_is_deduplicated(orchestrator, platform, scheduler):
    item = platform.add_item()
    assert await orchestrator.on_item_submitted(item.id) is not None
    assert await orchestrator.on_item_submitted(item.id) is None
    assert scheduler.names() == ["check_warning"]


async def test_unenforced_item_schedules_nothing(orchestrator, platform, scheduler):
    item = platform.add_item(kind="text", body="just a question about the game")
    evaluation = await orchestrator.on_item_submitted(item.id)
    assert not evaluation.enforce
    assert scheduler.jobs == []


async def test_warning_is_idempotent(orchestrator, platform, records, config):
    item = platform.add_item()
    assert await orchestrator.actions.issue_warning(item, config())
    assert not await orchestrator.actions.issue_warning(item, config())
    assert len(platform.bot_annotations(item.id)) == 1
    assert await records.tracked_item_ids(10) == [item.id]


async def test_duplicate_grace_timer_does_not_reschedule(orchestrator, platform, scheduler, clock):
    item = await _warned(orchestrator, platform, scheduler, clock)
    await orchestrator.check_warning(item.id)
    assert scheduler.names() == ["check_removal"]
    assert len(platform.bot_annotations(item.id)) == 1


async def test_report_mode_schedules_no_removal_timer(orchestrator, platform, scheduler, clock, config):
    config.update(enforcement_action="report")
    await _warned(orchestrator, platform, scheduler, clock)
    assert scheduler.jobs == []


async def test_report_and_both_modes_in_removal_routine(orchestrator, platform, records, config):
    both = config.update(enforcement_action="both")
    item = platform.add_item("both01")
    assert await orchestrator.actions.remove_item(item, both)
    assert platform.items[item.id].removed
    assert platform.reports == [(item.id, both.report_reason)]

    report = config.update(enforcement_action="report")
    item = platform.add_item("rep001")
    assert await orchestrator.actions.remove_item(item, report)
    assert not platform.items[item.id].removed
    removal = await records.get_removal(item.id)
    assert removal is not None and not removal.visibility_removed
    assert "reported" in platform.bot_annotations(item.id)[0].body


async def test_failed_removal_falls_back_to_report(orchestrator, platform, records, scheduler, clock):
    item = await _warned(orchestrator, platform, scheduler, clock)
    platform.failures["remove_item"] = TransientError("503")
    clock.advance(minutes=10)
    await scheduler.fire_due(orchestrator, clock.now())

    assert not platform.items[item.id].removed
    assert len(platform.reports) == 1
    removal = await records.get_removal(item.id)
    assert removal is not None and not removal.visibility_removed


async def test_lost_permissions_abandon_removal_and_raise_core_error(orchestrator, platform, records, scheduler, dispatcher, clock):
    item = await _warned(orchestrator, platform, scheduler, clock)
    platform.failures["remove_item"] = PermissionDeniedError("not a moderator")
    platform.failures["report_item"] = PermissionDeniedError("not a moderator")
    clock.advance(minutes=10)
    await scheduler.fire_due(orchestrator, clock.now())

    assert await records.get_removal(item.id) is None
    assert dispatcher.events()[-1] == "core_error"


async def test_timer_after_moderator_approval_is_a_no_op(orchestrator, platform, scheduler, clock):
    item = await _warned(orchestrator, platform, scheduler, clock)
    await platform.approve_item(item.id)
    clock.advance(minutes=10)
    await scheduler.fire_due(orchestrator, clock.now())
    assert platform.called("remove_item") == []


async def test_removal_timer_requires_a_warning(orchestrator, platform):
    item = platform.add_item()
    await orchestrator.check_removal(item.id)
    assert platform.called("remove_item") == []


async def test_failed_visibility_restore_keeps_records(orchestrator, platform, records, scheduler, dispatcher, clock):
    item = await _warned(orchestrator, platform, scheduler, clock)
    clock.advance(minutes=10)
    await scheduler.fire_due(orchestrator, clock.now())
    assert platform.items[item.id].removed

    platform.add_comment(item.id, EXPLANATION_80)
    platform.failures["approve_item"] = TransientError("timeout")
    assert not await orchestrator.check_for_explanation(item.id)
    record = await records.load(item.id)
    assert record.removed is not None and record.warned is not None
    assert "item_reinstated" not in dispatcher.events()

    del platform.failures["approve_item"]
    assert await orchestrator.sweep() == 1
    assert not platform.items[item.id].removed
    assert platform.bot_annotations(item.id) == []


async def test_auto_reinstate_disabled(orchestrator, platform, scheduler, clock, config):
    item = await _warned(orchestrator, platform, scheduler, clock)
    platform.add_comment(item.id, EXPLANATION_80)
    config.update(auto_reinstate=False)
    assert await orchestrator.sweep() == 0


async def test_untracked_items_are_never_reinstated(orchestrator, platform):
    item = platform.add_item(removed=True)
    platform.add_comment(item.id, EXPLANATION_80)
    assert not await orchestrator.check_for_explanation(item.id)
    assert platform.called("approve_item") == []


async def test_borderline_explanation_is_flagged(orchestrator, platform, scheduler, records, dispatcher, clock, config):
    item = platform.add_item()
    await orchestrator.on_item_submitted(item.id)
    comment = platform.add_comment(item.id, "x" * 60)
    clock.advance(minutes=5)
    await scheduler.fire_due(orchestrator, clock.now())

    assert platform.reports == [(comment.id, config().review_report_reason)]
    assert "explanation_flagged_for_review" in dispatcher.events()
    assert await records.get_approval(item.id) is not None


async def test_sweep_is_bounded(orchestrator, platform, records, config):
    for n in range(5):
        item = platform.add_item(f"item{n:02d}")
        await records.mark_warned(item.id)
    config.update(sweep_limit=2)
    await orchestrator.sweep()
    assert len(platform.called("get_item")) == 2


async def test_sweep_checks_the_newest_tracked_items(orchestrator, platform, records, clock, config):
    for item_id in ("aaa000", "aaa001", "aaa002"):
        platform.add_item(item_id, removed=True)
        await records.mark_removed(item_id)
        clock.advance(minutes=1)
    newest = platform.add_item("zzz999", removed=True)
    await records.mark_removed(newest.id)
    platform.add_comment(newest.id, EXPLANATION_80)
    config.update(sweep_limit=2)

    assert await orchestrator.sweep() == 1
    assert [args[0] for args in platform.called("get_item")] == ["zzz999", "aaa002"]
    assert not platform.items[newest.id].removed


async def test_borderline_flag_waits_for_reinstatement(orchestrator, platform, records, scheduler, dispatcher, clock, config):
    item = await _warned(orchestrator, platform, scheduler, clock)
    clock.advance(minutes=10)
    await scheduler.fire_due(orchestrator, clock.now())
    assert platform.items[item.id].removed

    comment = platform.add_comment(item.id, "x" * 60)
    platform.failures["approve_item"] = TransientError("timeout")
    for _ in range(3):
        assert await orchestrator.sweep() == 0
    assert platform.reports == []
    assert "explanation_flagged_for_review" not in dispatcher.events()

    del platform.failures["approve_item"]
    assert await orchestrator.sweep() == 1
    assert await orchestrator.sweep() == 0
    assert platform.reports == [(comment.id, config().review_report_reason)]
    assert dispatcher.events().count("explanation_flagged_for_review") == 1


async def test_approval_write_failure_still_completes_reinstatement(platform, scheduler, dispatcher, clock, config):
    class NoApprovalStore(MemoryStateStore):
        async def set(self, key, value, ttl_seconds):
            if key.startswith("approved:"):
                raise StateStoreError("down")
            await super().set(key, value, ttl_seconds)

    records = EnforcementRepository(NoApprovalStore(clock=clock.time), clock=clock.now)
    orchestrator = EscalationOrchestrator(
        platform=platform,
        records=records,
        scheduler=scheduler,
        notifier=dispatcher,
        config_provider=config,
    )
    item = await _warned(orchestrator, platform, scheduler, clock)
    clock.advance(minutes=10)
    await scheduler.fire_due(orchestrator, clock.now())
    platform.add_comment(item.id, EXPLANATION_80)

    assert await orchestrator.check_for_explanation(item.id)
    assert not platform.items[item.id].removed
    assert "item_reinstated" in dispatcher.events()
    assert "core_error" not in dispatcher.events()
    record = await records.load(item.id)
    assert not record.touched and record.approved is None


async def test_polling_is_a_deduplicated_backup_intake(orchestrator, platform, scheduler, config):
    platform.add_item("aaa111")
    platform.add_item("bbb222")
    assert await orchestrator.poll_new_items() == 0

    config.update(polling_enabled=True)
    assert await orchestrator.poll_new_items() == 2
    assert await orchestrator.poll_new_items() == 0
    assert sorted(j[1] for j in scheduler.jobs) == ["aaa111", "bbb222"]


async def test_store_outage_fails_open(platform, scheduler, dispatcher, clock, config):
    class DownStore(MemoryStateStore):
        async def get(self, key):
            raise StateStoreError("down")

        async def set(self, key, value, ttl_seconds):
            raise StateStoreError("down")

    orchestrator = EscalationOrchestrator(
        platform=platform,
        records=EnforcementRepository(DownStore(clock=clock.time), clock=clock.now),
        scheduler=scheduler,
        notifier=dispatcher,
        config_provider=config,
    )
    item = platform.add_item()
    assert await orchestrator.on_item_submitted(item.id) is None
    await orchestrator.check_warning(item.id)
    assert await orchestrator.sweep() == 0
    assert scheduler.jobs == []
    assert platform.called("add_annotation") == []
    assert "core_error" not in dispatcher.events()


async def test_permission_loss_on_fetch_emits_core_error(orchestrator, platform, dispatcher):
    item = platform.add_item()
    platform.failures["get_item"] = PermissionDeniedError("banned")
    assert await orchestrator.on_item_submitted(item.id) is None
    assert dispatcher.events() == ["core_error"]


async def test_deleted_item_is_a_no_op(orchestrator, platform, scheduler, records, dispatcher):
    await records.mark_warned("gone01")
    await orchestrator.check_removal("gone01")
    assert await orchestrator.check_for_explanation("gone01") is False
    assert dispatcher.events() == []
