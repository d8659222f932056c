"""End-to-end job runs against the fake portal page."""

import asyncio

import pytest

from coverage_backend.models import (
    AutomationRequest,
    Carrier,
    JobOutcome,
    ProgressEvent,
    TerminalEvent,
    ViewMode,
)
from coverage_backend.orchestrator import JobOrchestrator
from coverage_backend.portal import build_stages
from coverage_backend.progress import ProgressEmitter
from coverage_backend.stages import Stage
from fakes import (
    FakePage,
    failing_session_factory,
    fake_session_factory,
    make_settings,
    quiet_humanizer,
)

ALL_VIEWS = [ViewMode.INDOOR, ViewMode.OUTDOOR, ViewMode.INDOOR_OUTDOOR]


def _orchestrator(page, **settings):
    return JobOrchestrator(
        make_settings(**settings),
        session_factory=fake_session_factory(page),
        humanizer=quiet_humanizer(),
    )


def _run(orchestrator, request, emitter=None):
    return asyncio.run(orchestrator.run(request, emitter))


def _progress_values(emitter):
    return [e.progress for e in emitter.history if isinstance(e, ProgressEvent)]


def test_single_indoor_capture():
    """One carrier, one view mode, every step succeeds."""
    page = FakePage()
    emitter = ProgressEmitter("job123")
    request = AutomationRequest.create("123 Main St", [Carrier.ATT], [ViewMode.INDOOR])

    result = _run(_orchestrator(page), request, emitter)

    assert result.outcome is JobOutcome.SUCCESS
    assert len(result.screenshots) == 1
    name = result.screenshots[0].filename
    assert "INDOOR" in name
    assert "123_Main_St" in name
    assert "fallback" not in name
    assert result.warnings == []

    assert page.launched == 1
    assert page.closed == 1
    assert page.url.endswith("/dashboard")
    assert 'label:has-text("AT&T US") >> input[type="checkbox"]' in page.checked
    assert page.checked['label:has-text("AT&T US") >> input[type="checkbox"]'] is True


def test_progress_is_monotonic_with_one_terminal_event():
    page = FakePage()
    emitter = ProgressEmitter("job-mono")
    request = AutomationRequest.create("1 Elm Rd", [Carrier.VERIZON], ALL_VIEWS)

    _run(_orchestrator(page), request, emitter)

    values = _progress_values(emitter)
    assert values == sorted(values)
    assert all(0 <= v <= 100 for v in values)
    assert values[-1] == 100
    terminals = [e for e in emitter.history if isinstance(e, TerminalEvent)]
    assert len(terminals) == 1
    assert emitter.history[-1] is terminals[0]


def test_fallback_capture_counts_as_success():
    """Primary capture fails, clipped viewport works: success, not partial."""
    page = FakePage(element_shots_fail=True)
    request = AutomationRequest.create("123 Main St", [Carrier.ATT], [ViewMode.INDOOR])

    result = _run(_orchestrator(page), request)

    assert result.outcome is JobOutcome.SUCCESS
    assert not result.partial
    assert len(result.screenshots) == 1
    assert "fallback" in result.screenshots[0].filename
    assert result.screenshots[0].fallback
    assert page.page_shots == [make_settings().fallback_clip]


def test_second_view_failing_gives_partial_result():
    page = FakePage(failing_views={"Outdoor"})
    request = AutomationRequest.create("9 Bay St", [Carrier.TMOBILE], ALL_VIEWS)

    result = _run(_orchestrator(page), request)

    assert result.outcome is JobOutcome.PARTIAL
    assert result.success
    assert result.requested == 3
    tags = [s.filename.split("_")[1] for s in result.screenshots]
    assert tags == ["INDOOR", "OUTDOOR"]
    assert result.screenshots[1].filename.startswith("ookla_OUTDOOR_INDOOR_")
    assert [s.view_mode for s in result.screenshots] == [ViewMode.INDOOR, ViewMode.INDOOR_OUTDOOR]
    assert any("Outdoor screenshot failed" in w for w in result.warnings)
    assert page.closed == 1


def test_all_views_failing_is_a_failure():
    page = FakePage(failing_views={"Indoor", "Outdoor"})
    emitter = ProgressEmitter("job-none")
    request = AutomationRequest.create("9 Bay St", [], [ViewMode.INDOOR, ViewMode.OUTDOOR])

    result = _run(_orchestrator(page), request, emitter)

    assert result.outcome is JobOutcome.FAILED
    assert result.error_kind == "capture_failed"
    assert result.screenshots == []
    assert any(isinstance(e, ProgressEvent) and e.status == "error" for e in emitter.history)


def test_no_view_modes_requested_succeeds_without_artifacts():
    page = FakePage()
    result = _run(_orchestrator(page), AutomationRequest.create("5 Oak Ave", [Carrier.ATT], []))

    assert result.outcome is JobOutcome.SUCCESS
    assert result.screenshots == []
    assert page.element_shots == []


def test_login_failure_skips_everything_after_authentication():
    page = FakePage(login_succeeds=False)
    emitter = ProgressEmitter("job-auth")
    request = AutomationRequest.create("123 Main St", [Carrier.ATT], ALL_VIEWS)

    result = _run(_orchestrator(page), request, emitter)

    assert not result.success
    assert result.error_kind == "authentication_failed"
    assert result.screenshots == []
    assert page.element_shots == []
    assert page.page_shots == []
    assert not any("Network Provider" in c for c in page.clicks)
    assert page.closed == 1

    wire = emitter.history[-1].to_wire()
    assert wire["final"] is True
    assert wire["success"] is False
    assert wire["screenshots"] == []


def test_missing_credentials_fail_authentication():
    page = FakePage()
    orchestrator = _orchestrator(page, username="", password="")

    result = _run(orchestrator, AutomationRequest.create("1 A St", [], [ViewMode.INDOOR]))

    assert result.error_kind == "authentication_failed"
    assert "not configured" in result.error
    assert page.closed == 1


def test_missing_address_box_is_fatal():
    page = FakePage(missing={
        'input[type="text"]',
        'input[placeholder*="address" i], input[placeholder*="search" i]',
    })
    result = _run(_orchestrator(page), AutomationRequest.create("1 A St", [], [ViewMode.INDOOR]))

    assert result.error_kind == "target_not_found"
    assert "address_input" in result.error
    assert page.element_shots == []
    assert page.closed == 1


def test_missing_optional_control_becomes_warning():
    page = FakePage(missing={
        "text=LTE >> xpath=.. >> span",
        'span:text-is("LTE")',
    })
    result = _run(_orchestrator(page), AutomationRequest.create("1 A St", [], [ViewMode.INDOOR]))

    assert result.outcome is JobOutcome.SUCCESS
    assert len(result.screenshots) == 1
    assert any(w.startswith("Selecting RSRP metric skipped") for w in result.warnings)


def test_browser_launch_failure():
    page = FakePage()
    orchestrator = JobOrchestrator(
        make_settings(),
        session_factory=failing_session_factory(page),
        humanizer=quiet_humanizer(),
    )
    result = _run(orchestrator, AutomationRequest.create("1 A St", [], [ViewMode.INDOOR]))

    assert result.error_kind == "resource_error"
    assert page.launched == 1


async def _hang(ctx):
    await asyncio.sleep(3600)


def _hanging_orchestrator(page, **settings):
    return JobOrchestrator(
        make_settings(**settings),
        session_factory=fake_session_factory(page),
        stage_builder=lambda request: [Stage("hang", "Waiting forever", (5, 10), _hang)],
        humanizer=quiet_humanizer(),
    )


def test_job_timeout_releases_browser():
    page = FakePage()
    emitter = ProgressEmitter("job-slow")
    orchestrator = _hanging_orchestrator(page, job_timeout_s=0.05)

    result = _run(orchestrator, AutomationRequest.create("1 A St", [], [ViewMode.INDOOR]), emitter)

    assert result.error_kind == "job_timeout"
    assert page.closed == 1
    assert emitter.closed
    assert orchestrator.active_jobs == 0


def test_cancellation_releases_browser():
    page = FakePage()
    emitter = ProgressEmitter("job-cancel")
    orchestrator = _hanging_orchestrator(page)

    async def scenario():
        task = asyncio.create_task(
            orchestrator.run(AutomationRequest.create("1 A St", [], [ViewMode.INDOOR]), emitter)
        )
        while emitter.last_progress < 5:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert page.launched == 1
    assert page.closed == 1
    assert emitter.closed
    assert orchestrator.active_jobs == 0


def test_concurrency_ceiling_queues_second_job():
    page = FakePage()
    orchestrator = _hanging_orchestrator(page, max_concurrent_jobs=1)
    waiting = ProgressEmitter("job-waiting")

    async def scenario():
        blocker = asyncio.create_task(
            orchestrator.run(AutomationRequest.create("1 A St", [], []))
        )
        while page.launched == 0:
            await asyncio.sleep(0.01)

        queued = asyncio.create_task(
            orchestrator.run(AutomationRequest.create("2 B St", [], []), waiting)
        )
        await asyncio.sleep(0.05)
        assert waiting.history[-1].step == "Waiting for a free browser slot (position 1)"
        assert page.launched == 1
        assert orchestrator.active_jobs == 1

        orchestrator.stage_builder = build_stages
        blocker.cancel()
        with pytest.raises(asyncio.CancelledError):
            await blocker
        return await queued

    result = asyncio.run(scenario())

    assert result.outcome is JobOutcome.SUCCESS
    assert page.launched == 2
    assert page.closed == 2


def test_queue_positions_follow_the_line():
    page = FakePage()
    orchestrator = _hanging_orchestrator(page, max_concurrent_jobs=1)
    first = ProgressEmitter("q1")
    second = ProgressEmitter("q2")

    def request():
        return AutomationRequest.create("1 A St", [], [])

    async def scenario():
        blocker = asyncio.create_task(orchestrator.run(request(), job_id="busy"))
        while page.launched == 0:
            await asyncio.sleep(0.01)

        waiting_1 = asyncio.create_task(orchestrator.run(request(), first))
        waiting_2 = asyncio.create_task(orchestrator.run(request(), second))
        await asyncio.sleep(0.05)

        assert orchestrator.queue_snapshot() == {"active": ["busy"], "waiting": ["q1", "q2"]}
        assert first.history[-1].step == "Waiting for a free browser slot (position 1)"
        assert second.history[-1].step == "Waiting for a free browser slot (position 2)"

        waiting_1.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiting_1
        assert orchestrator.queue_snapshot()["waiting"] == ["q2"]
        assert second.history[-1].step == "Waiting for a free browser slot (position 1)"

        for task in (waiting_2, blocker):
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

    asyncio.run(scenario())

    assert first.closed and second.closed
    assert orchestrator.queue_snapshot() == {"active": [], "waiting": []}
    assert page.launched == page.closed
