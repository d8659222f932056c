"""Screenshot naming and the element -> clipped viewport fallback."""

import asyncio
from datetime import datetime, timezone

import pytest

from coverage_backend.capture import CapturePipeline, job_timestamp, make_filename, sanitize
from coverage_backend.errors import CaptureFailed
from coverage_backend.models import ViewMode
from coverage_backend.resolver import SelectorResolver
from fakes import PNG, FakePage

CLIP = {"x": 0, "y": 50, "width": 1280, "height": 670}
STAMP = "2026-03-01T10-20-30-123Z"


def _pipeline(page, address="123 Main St"):
    return CapturePipeline(page, SelectorResolver(page), address, "abc123def456xyz", CLIP, STAMP)


def test_sanitize_replaces_and_truncates():
    assert sanitize("123 Main St, Apt #4") == "123_Main_St__Apt__4"
    assert len(sanitize("x" * 80)) == 50
    assert sanitize("Ünïcode") == "_n_code"


def test_timestamp_is_filename_safe():
    stamp = job_timestamp(datetime(2026, 3, 1, 10, 20, 30, 123000, tzinfo=timezone.utc))
    assert stamp == "2026-03-01T10-20-30-123-00-00"
    assert ":" not in job_timestamp()
    assert "." not in job_timestamp()


def test_filenames_carry_tag_address_and_job_id():
    name = make_filename(ViewMode.INDOOR_OUTDOOR, "1 Elm Rd", "abc123def456xyz", STAMP)
    assert name == f"ookla_OUTDOOR_INDOOR_1_Elm_Rd_abc123def456_{STAMP}.png"

    fallback = make_filename(ViewMode.OUTDOOR, "1 Elm Rd", "", STAMP, fallback=True)
    assert fallback == f"ookla_OUTDOOR_fallback_1_Elm_Rd_{STAMP}.png"


def test_element_capture_is_preferred():
    page = FakePage()
    shot = asyncio.run(_pipeline(page).capture(ViewMode.INDOOR))

    assert shot.data == PNG
    assert not shot.fallback
    assert shot.filename.startswith("ookla_INDOOR_123_Main_St_")
    assert page.page_shots == []


def test_clipped_capture_when_content_area_missing():
    page = FakePage(element_shots_fail=True)
    shot = asyncio.run(_pipeline(page).capture(ViewMode.OUTDOOR))

    assert shot.fallback
    assert "_fallback_" in shot.filename
    assert page.page_shots == [CLIP]


def test_both_captures_failing_raises():
    page = FakePage(failing_views={"Indoor"})
    page.current_view = "Indoor"

    with pytest.raises(CaptureFailed) as err:
        asyncio.run(_pipeline(page).capture(ViewMode.INDOOR))

    assert "Indoor screenshot failed" in str(err.value)
    assert "clipped viewport" in str(err.value)


def test_three_modes_with_middle_failure():
    page = FakePage(failing_views={"Outdoor"})
    pipeline = _pipeline(page)
    shots, failures = [], []

    async def run_all():
        for mode, view in ((ViewMode.INDOOR, "Indoor"),
                           (ViewMode.OUTDOOR, "Outdoor"),
                           (ViewMode.INDOOR_OUTDOOR, "Indoor & Outdoor")):
            page.current_view = view
            try:
                shots.append(await pipeline.capture(mode))
            except CaptureFailed:
                failures.append(mode)

    asyncio.run(run_all())

    assert [s.view_mode for s in shots] == [ViewMode.INDOOR, ViewMode.INDOOR_OUTDOOR]
    assert failures == [ViewMode.OUTDOOR]
    assert "OUTDOOR_INDOOR" in shots[1].filename
