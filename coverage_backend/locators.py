"""Locator table for the cell-analytics portal.

Every remote-DOM selector the automation uses lives here, grouped by the
stage that needs it and keyed by a logical target name. Each target maps to
an ordered fallback chain; the resolver tries them strictly in order.
Portal markup changes should only ever require edits to this file.

Locator kinds:
  css     Playwright selector (CSS plus the ``:has-text`` / ``>>`` extensions)
  text    visible-text match via ``page.get_by_text``
  script  JS function evaluated in the page; must return an element or null

Selectors may contain ``{placeholders}`` filled from resolver parameters.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Locator:
    selector: str
    kind: str = "css"
    nth: int | None = 0            # None → whole match set (strict)
    has_text: str | None = None    # case-insensitive regex filter
    state: str = "visible"
    timeout_ms: int = 5_000

    def describe(self) -> str:
        extra = f" nth={self.nth}" if self.nth not in (None, 0) else ""
        if self.has_text:
            extra += f" /{self.has_text}/i"
        sel = self.selector if self.kind != "script" else "<dom script>"
        return f"{self.kind}:{sel}{extra}"


# The content region is a Vaadin split panel under a generated ROOT-<n> id
_ROOT = (
    "#ROOT-2521314 > div > div.v-verticallayout.v-layout.v-vertical.v-widget"
    ".v-has-width.v-has-height > div > div:nth-child(2) > div > "
    "div.v-splitpanel-horizontal.v-widget.v-has-width.v-has-height > div > "
    "div.v-splitpanel-second-container.v-scrollable"
)

_OPTION_LIST = "#VAADIN_COMBOBOX_OPTIONLIST"

_JS_DAY_RADIO = """
() => document.querySelectorAll(
    'input[type="radio"].leaflet-control-layers-selector'
)[3] || null
"""

_JS_ADDRESS_INPUT = """
() => document.querySelector('input[type="text"]')
"""

_JS_RSRP_CHECKBOX = """
() => {
    for (const span of document.querySelectorAll('span.v-captiontext')) {
        if (span.textContent.includes('RSRP')) {
            const row = span.closest('tr');
            if (row) return row.querySelector('input[type="checkbox"]');
        }
    }
    return null;
}
"""

_JS_VIEW_DROPDOWN_BUTTON = """
() => {
    for (const dropdown of document.querySelectorAll('div.v-filterselect')) {
        if (dropdown.querySelector('img[src*="indoor"]')) {
            return dropdown.querySelector('div.v-filterselect-button');
        }
    }
    return null;
}
"""

_JS_CONTENT_AREA = """
() => {
    let best = null, bestArea = 0;
    for (const el of document.querySelectorAll('div.v-splitpanel-second-container')) {
        const r = el.getBoundingClientRect();
        if (r.width * r.height > bestArea) { best = el; bestArea = r.width * r.height; }
    }
    return best;
}
"""


LOCATORS: dict[str, dict[str, tuple[Locator, ...]]] = {
    "authenticate": {
        "username_input": (
            Locator('input[name="username"]', timeout_ms=10_000),
            Locator('input[autocomplete="username"], input[type="email"]'),
        ),
        "password_input": (
            Locator('input[name="password"]'),
            Locator('input[type="password"]'),
        ),
        "login_submit": (
            Locator('input[type="submit"], button[type="submit"]'),
            Locator("button:has-text('Log in'), button:has-text('Sign in')"),
        ),
    },
    "map_layer": {
        "layers_toggle": (
            Locator('a.leaflet-control-layers-toggle[title="Layers"]', state="attached", timeout_ms=8_000),
            Locator("a.leaflet-control-layers-toggle", state="attached", timeout_ms=2_000),
        ),
        "day_layer_radio": (
            Locator(
                'input[type="radio"].leaflet-control-layers-selector[name="leaflet-base-layers"]',
                nth=3, state="attached", timeout_ms=2_000,
            ),
            Locator(_JS_DAY_RADIO, kind="script"),
            Locator('label:has-text("Day")', timeout_ms=1_000),
        ),
    },
    "address": {
        "address_input": (
            Locator('input[type="text"]', timeout_ms=10_000),
            Locator('input[placeholder*="address" i], input[placeholder*="search" i]'),
            Locator(_JS_ADDRESS_INPUT, kind="script"),
        ),
    },
    "carriers": {
        "provider_section_toggle": (
            Locator("text=Network Provider >> xpath=.. >> span", timeout_ms=10_000),
            Locator('span:has-text("Network Provider")'),
        ),
        "carrier_label": (
            Locator('label:has-text("{label}")'),
            Locator("label", has_text="^\\s*{label}\\s*$"),
        ),
    },
    "signal_metric": {
        "lte_section_toggle": (
            Locator("text=LTE >> xpath=.. >> span", timeout_ms=10_000),
            Locator('span:text-is("LTE")'),
        ),
        "rsrp_checkbox": (
            Locator(
                'tr:has(span.v-captiontext:has-text("RSRP")) input[type="checkbox"]',
                state="attached", timeout_ms=15_000,
            ),
            Locator(_JS_RSRP_CHECKBOX, kind="script"),
        ),
        "other_lte_rows": (
            Locator("tr", nth=None, has_text="RSRQ|SNR|CQI", state="attached"),
        ),
    },
    "viewport": {
        "zoom_button": (
            Locator(
                _ROOT + " > div > div > div > div:nth-child(1) > div > "
                "div.v-panel-content.v-scrollable > div > div > div > div:nth-child(1) > "
                "div > div > div > div:nth-child(1) > div > div > div:nth-child(1) > div",
                timeout_ms=10_000,
            ),
            Locator("div.v-button.v-widget span.v-icon.FontAwesome"),
        ),
        "collapse_button": (
            Locator(
                _ROOT + " > div > div > div > "
                "div.v-absolutelayout-wrapper.v-absolutelayout-wrapper-expand-component > "
                "div > div > div > div",
                timeout_ms=10_000,
            ),
            Locator("div.v-absolutelayout-wrapper-expand-component div.v-button.v-widget"),
        ),
    },
    "view_mode": {
        "view_dropdown_button": (
            Locator('div.v-filterselect:has(img[src*="inandoutdoor"]) div.v-filterselect-button', timeout_ms=10_000),
            Locator('div.v-filterselect.map-cb:has(img[src*="indoor"]) div.v-filterselect-button'),
            Locator("div.v-filterselect-map-cb div.v-filterselect-button"),
            Locator(_JS_VIEW_DROPDOWN_BUTTON, kind="script"),
        ),
        "view_option_list": (
            Locator(_OPTION_LIST),
        ),
        "view_option_indoor": (
            Locator(f'{_OPTION_LIST} td:text-is("Indoor View")'),
            Locator(f"{_OPTION_LIST} td", has_text="^\\s*indoor view\\s*$"),
        ),
        "view_option_outdoor": (
            Locator(f'{_OPTION_LIST} td:text-is("Outdoor View")'),
            Locator(f"{_OPTION_LIST} td", has_text="^\\s*outdoor view\\s*$"),
        ),
        "view_option_indoor_outdoor": (
            Locator(f'{_OPTION_LIST} td:has-text("Outdoor & Indoor")'),
            Locator(f"{_OPTION_LIST} td", has_text="outdoor.*indoor"),
            Locator(f"{_OPTION_LIST} td", has_text="indoor.*outdoor"),
        ),
    },
    "capture": {
        "content_area": (
            Locator(_ROOT, timeout_ms=10_000),
            Locator('[id^="ROOT-"] div.v-splitpanel-horizontal div.v-splitpanel-second-container.v-scrollable'),
            Locator(_JS_CONTENT_AREA, kind="script"),
        ),
    },
}


def flatten(table: dict[str, dict[str, tuple[Locator, ...]]] = LOCATORS) -> dict[str, tuple[Locator, ...]]:
    """Collapse the per-stage grouping into one target → chain mapping."""
    flat: dict[str, tuple[Locator, ...]] = {}
    for stage, targets in table.items():
        for name, chain in targets.items():
            if name in flat:
                raise ValueError(f"Target '{name}' defined twice (second in stage '{stage}')")
            flat[name] = chain
    return flat


TARGETS = flatten()
