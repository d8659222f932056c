"""Cell-analytics portal stages.

Each stage body takes a ``StageContext`` and drives the portal through the
resolver (for DOM handles) and the humanizer (for pointer, typing and
pacing). ``build_stages`` returns them in job order with their progress
slots.

Stage order:
  open portal -> authenticate -> map layer (Day) -> address ->
  carriers -> signal metric (RSRP) -> viewport -> capture per view mode
"""

from __future__ import annotations

import logging

from coverage_backend.errors import (
    AuthenticationFailed,
    CaptureFailed,
    ResourceError,
    TargetNotFound,
)
from coverage_backend.models import AutomationRequest, Carrier, ViewMode
from coverage_backend.stages import Stage, StageContext, browser_gone

log = logging.getLogger("portal")

# Injected before any page script runs
STEALTH_JS = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
window.chrome = { runtime: {} };
"""

# (start %, end %) per stage
STAGE_WEIGHTS: dict[str, tuple[int, int]] = {
    "open_portal": (2, 8),
    "authenticate": (8, 20),
    "map_layer": (20, 28),
    "address": (28, 42),
    "carriers": (42, 55),
    "signal_metric": (55, 65),
    "viewport": (65, 72),
    "capture": (72, 98),
}


# ---------------------------------------------------------------------------
# Session stages
# ---------------------------------------------------------------------------

async def open_portal(ctx: StageContext) -> None:
    s = ctx.settings
    await ctx.page.goto(s.login_url, wait_until="domcontentloaded", timeout=s.scaled(45_000))
    await ctx.resolver.resolve("username_input")
    await ctx.humanizer.pause(800)


async def authenticate(ctx: StageContext) -> None:
    s, h, page = ctx.settings, ctx.humanizer, ctx.page
    if not s.has_credentials:
        raise AuthenticationFailed("Portal credentials are not configured")

    try:
        username = await ctx.resolver.resolve("username_input")
        await h.type(page, username, s.username)
        await h.pause(500)

        password = await ctx.resolver.resolve("password_input")
        await h.type(page, password, s.password)
        await h.pause(600)

        submit = await ctx.resolver.resolve("login_submit")
    except TargetNotFound as exc:
        raise AuthenticationFailed(f"Login form incomplete: {exc}") from exc

    ctx.report(ctx.stage.progress_range[0] + 6, "Submitting login form")
    await h.click(page, submit)

    try:
        await page.wait_for_url(s.portal_url_pattern, timeout=s.scaled(30_000))
    except Exception as exc:
        if browser_gone(exc):
            raise
        log.info("[%s] No redirect after login, checking URL", ctx.job_id)
    await h.wait("long")

    if "/login" in page.url:
        raise AuthenticationFailed("Login failed, portal is still on the login page")
    log.info("[%s] Logged in, now at %s", ctx.job_id, page.url)


# ---------------------------------------------------------------------------
# Map configuration stages
# ---------------------------------------------------------------------------

async def select_day_layer(ctx: StageContext) -> None:
    toggle = await ctx.resolver.resolve("layers_toggle")
    await toggle.hover()
    await ctx.humanizer.wait("short")
    radio = await ctx.resolver.resolve("day_layer_radio")
    await radio.click(force=True, timeout=ctx.settings.scaled(2_000))
    await ctx.humanizer.wait("short")
    await ctx.humanizer.move_away(ctx.page)


async def submit_address(ctx: StageContext) -> None:
    h, page, address = ctx.humanizer, ctx.page, ctx.request.address
    search = await ctx.resolver.resolve("address_input")
    await h.type(page, search, address, clear=True)
    await h.wait("medium")
    await search.press("Enter")
    await h.wait("long")
    await h.wait("medium")

    entered = await search.input_value()
    if entered.strip() != address:
        log.warning("[%s] Address field shows %r after submit", ctx.job_id, entered)
    await h.wait("long")


async def _carrier_checkbox(ctx: StageContext, carrier: Carrier):
    label = await ctx.resolver.resolve("carrier_label", label=carrier.portal_label)
    for_id = await label.get_attribute("for")
    if for_id:
        return label, ctx.page.locator(f'[id="{for_id}"]')
    return label, label.locator('input[type="checkbox"]')


async def set_carrier(ctx: StageContext, carrier: Carrier, checked: bool) -> bool:
    """Bring one carrier checkbox to ``checked``. Returns True when it was clicked."""
    label, box = await _carrier_checkbox(ctx, carrier)
    if await box.is_checked() == checked:
        return False
    await label.scroll_into_view_if_needed()
    await label.click()
    await ctx.humanizer.wait("short")
    return True


async def select_carriers(ctx: StageContext) -> None:
    h, page = ctx.humanizer, ctx.page
    section = await ctx.resolver.resolve("provider_section_toggle")
    await section.scroll_into_view_if_needed()
    await h.click(page, section)
    await h.wait("long")

    # baseline: nothing selected
    for carrier in Carrier:
        try:
            await set_carrier(ctx, carrier, False)
        except Exception as exc:
            if browser_gone(exc):
                raise
            log.debug("[%s] %s not reset: %s", ctx.job_id, carrier.value, exc)
    await h.wait("medium")

    for carrier in ctx.request.carriers:
        try:
            await set_carrier(ctx, carrier, True)
        except Exception as exc:
            if browser_gone(exc):
                raise
            ctx.warn(f"Could not select carrier {carrier.value}: {exc}")
    await h.wait("medium")


async def select_signal_metric(ctx: StageContext) -> None:
    """Open the LTE section and leave RSRP as the only checked metric."""
    h, page = ctx.humanizer, ctx.page
    section = await ctx.resolver.resolve("lte_section_toggle")
    await section.scroll_into_view_if_needed()
    await h.click(page, section)
    await h.wait("long")

    rows = ctx.resolver.locate_all("other_lte_rows")
    for i in range(await rows.count()):
        checkbox = rows.nth(i).locator('input[type="checkbox"]').first
        try:
            if await checkbox.is_checked():
                await checkbox.uncheck(force=True)
                await h.wait("short")
        except Exception as exc:
            if browser_gone(exc):
                raise
            log.debug("[%s] LTE row %d not unchecked: %s", ctx.job_id, i, exc)

    rsrp = await ctx.resolver.resolve("rsrp_checkbox")
    if not await rsrp.is_checked():
        await rsrp.scroll_into_view_if_needed()
        await rsrp.check(force=True)
    await h.wait("medium")


async def prepare_viewport(ctx: StageContext) -> None:
    """Zoom in twice and collapse the side panel before the first capture."""
    if not ctx.request.view_modes:
        log.info("[%s] No view modes requested, leaving viewport as is", ctx.job_id)
        return
    h, page = ctx.humanizer, ctx.page

    try:
        zoom = await ctx.resolver.resolve("zoom_button")
        for _ in range(2):
            await h.click(page, zoom)
            await h.wait("medium")
    except TargetNotFound as exc:
        ctx.warn(f"Could not zoom the map: {exc}")

    try:
        collapse = await ctx.resolver.resolve("collapse_button")
        await h.click(page, collapse)
        await h.wait("medium")
    except TargetNotFound as exc:
        ctx.warn(f"Could not collapse the side panel: {exc}")


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------

async def select_view_mode(ctx: StageContext, mode: ViewMode) -> None:
    h, page = ctx.humanizer, ctx.page
    button = await ctx.resolver.resolve("view_dropdown_button")
    await h.click(page, button)
    await h.wait("short")
    await ctx.resolver.resolve("view_option_list")
    option = await ctx.resolver.resolve(mode.target)
    await option.click()
    await h.wait("medium")


async def capture_views(ctx: StageContext) -> None:
    modes = ctx.request.view_modes
    if not modes:
        return
    start, end = ctx.stage.progress_range
    span = (end - start) / len(modes)

    for i, mode in enumerate(modes):
        base = start + span * i
        ctx.report(base, f"Selecting {mode.value} view")
        try:
            await select_view_mode(ctx, mode)
        except Exception as exc:
            if browser_gone(exc):
                raise ResourceError(f"Browser went away selecting {mode.value} view: {exc}") from exc
            ctx.warn(f"Could not switch to {mode.value} view, capturing current view ({exc})")

        await ctx.humanizer.wait("long")
        ctx.report(base + span / 2, f"Capturing {mode.value} view")
        try:
            shot = await ctx.capture.capture(mode)
        except CaptureFailed as exc:
            ctx.warn(str(exc))
            ctx.report(base + span, f"{mode.value} view not captured")
            continue
        ctx.screenshots.append(shot)
        ctx.report(base + span, f"Captured {mode.value} view")


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------

def build_stages(request: AutomationRequest) -> list[Stage]:
    w = STAGE_WEIGHTS
    return [
        Stage("open_portal", "Opening portal", w["open_portal"], open_portal,
              fatal=True, done_label="Portal loaded"),
        Stage("authenticate", "Logging in", w["authenticate"], authenticate,
              fatal=True, done_label="Logged in"),
        Stage("map_layer", "Switching map to Day view", w["map_layer"], select_day_layer),
        Stage("address", f"Searching address: {request.address}", w["address"], submit_address,
              fatal=True, done_label="Address located"),
        Stage("carriers", "Selecting carriers", w["carriers"], select_carriers),
        Stage("signal_metric", "Selecting RSRP metric", w["signal_metric"], select_signal_metric),
        Stage("viewport", "Preparing map view", w["viewport"], prepare_viewport),
        Stage("capture", "Capturing coverage maps", w["capture"], capture_views,
              done_label="Screenshots captured"),
    ]
