"""In-memory stand-ins for the Playwright page API used by the tests.

FakePage records every interaction and can be told which selectors never
appear (``missing``), whether login redirects, and which view modes fail to
screenshot. The currently shown view follows clicks on the dropdown options.
"""

from __future__ import annotations

import asyncio
import random
from contextlib import asynccontextmanager

from coverage_backend.config import Settings
from coverage_backend.errors import ResourceError
from coverage_backend.humanize import Humanizer
from coverage_backend.orchestrator import BrowserSession

PNG = b"\x89PNG\r\n\x1a\n" + bytes(range(256)) * 4

_VIEW_OPTIONS = (
    ("Outdoor & Indoor", "Indoor & Outdoor"),
    ("Indoor View", "Indoor"),
    ("Outdoor View", "Outdoor"),
)


class FakeTimeout(Exception):
    """Shaped like playwright's TimeoutError message."""


class FakeMouse:
    def __init__(self, page: FakePage) -> None:
        self.page = page

    async def move(self, x, y, steps=1) -> None:
        self.page.calls.append(("mouse.move", round(x), round(y)))


class FakeKeyboard:
    def __init__(self, page: FakePage) -> None:
        self.page = page

    async def press(self, key: str) -> None:
        self.page.calls.append(("keyboard.press", key))
        if key == "Control+A":
            self.page.typed.clear()

    async def type(self, text: str) -> None:
        self.page.typed.append(text)


class FakeHandle:
    def __init__(self, element=None) -> None:
        self.element = element
        self.disposed = False

    def as_element(self):
        return self.element

    async def dispose(self) -> None:
        self.disposed = True


class FakeLocator:
    def __init__(self, page: FakePage, selector: str) -> None:
        self.page = page
        self.selector = selector

    def __repr__(self) -> str:
        return f"FakeLocator({self.selector!r})"

    # chaining ---------------------------------------------------------------

    def filter(self, has_text=None) -> FakeLocator:
        return self

    def nth(self, index: int) -> FakeLocator:
        return self

    @property
    def first(self) -> FakeLocator:
        return self

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self.page, f"{self.selector} >> {selector}")

    # waiting / queries ------------------------------------------------------

    async def wait_for(self, state="visible", timeout=None) -> None:
        self.page.waited.append(self.selector)
        if self.selector in self.page.missing:
            raise FakeTimeout(f"Timeout {timeout}ms exceeded waiting for {self.selector}")

    async def count(self) -> int:
        return self.page.counts.get(self.selector, 0)

    async def bounding_box(self):
        return {"x": 100, "y": 200, "width": 120, "height": 30}

    async def get_attribute(self, name: str):
        return None

    async def is_checked(self) -> bool:
        return self.page.checked.get(self.selector, False)

    async def input_value(self) -> str:
        return "".join(self.page.typed)

    # actions ----------------------------------------------------------------

    async def click(self, **kwargs) -> None:
        self.page.clicks.append(self.selector)
        for needle, view in _VIEW_OPTIONS:
            if needle in self.selector:
                self.page.current_view = view
                break
        if self.selector.startswith("label"):
            key = f"{self.selector} >> input[type=\"checkbox\"]"
            self.page.checked[key] = not self.page.checked.get(key, False)

    async def hover(self) -> None:
        self.page.calls.append(("hover", self.selector))

    async def press(self, key: str) -> None:
        self.page.calls.append(("press", key))

    async def scroll_into_view_if_needed(self) -> None:
        pass

    async def check(self, force=False) -> None:
        self.page.checked[self.selector] = True

    async def uncheck(self, force=False) -> None:
        self.page.checked[self.selector] = False

    async def screenshot(self, type="png") -> bytes:
        self.page.element_shots.append(self.page.current_view)
        if self.page.element_shots_fail or self.page.current_view in self.page.failing_views:
            raise FakeTimeout("Timeout 30000ms exceeded taking element screenshot")
        return PNG


class FakePage:
    def __init__(
        self,
        missing: set[str] | None = None,
        login_succeeds: bool = True,
        element_shots_fail: bool = False,
        failing_views: set[str] | None = None,
    ) -> None:
        self.missing = set(missing or ())
        self.login_succeeds = login_succeeds
        self.element_shots_fail = element_shots_fail
        self.failing_views = set(failing_views or ())

        self.url = "about:blank"
        self.current_view = "Indoor & Outdoor"
        self.mouse = FakeMouse(self)
        self.keyboard = FakeKeyboard(self)

        self.calls: list[tuple] = []
        self.clicks: list[str] = []
        self.waited: list[str] = []
        self.typed: list[str] = []
        self.checked: dict[str, bool] = {}
        self.counts: dict[str, int] = {}
        self.element_shots: list[str] = []
        self.page_shots: list[dict] = []

        self.launched = 0
        self.closed = 0

    async def goto(self, url: str, **kwargs) -> None:
        self.calls.append(("goto", url))
        self.url = url

    async def wait_for_url(self, pattern: str, timeout=None) -> None:
        if not self.login_succeeds:
            raise FakeTimeout(f"Timeout {timeout}ms exceeded waiting for {pattern}")
        self.url = "https://cellanalytics.ookla.com/dashboard"

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    def get_by_text(self, text: str) -> FakeLocator:
        return FakeLocator(self, f"text={text}")

    async def evaluate_handle(self, script: str) -> FakeHandle:
        return FakeHandle(None)

    async def screenshot(self, type="png", clip=None) -> bytes:
        self.page_shots.append(clip)
        if self.current_view in self.failing_views:
            raise FakeTimeout("Timeout 30000ms exceeded taking page screenshot")
        return PNG[:1024]


# ---------------------------------------------------------------------------
# Session / settings helpers
# ---------------------------------------------------------------------------

def fake_session_factory(page: FakePage):
    @asynccontextmanager
    async def factory(settings: Settings):
        page.launched += 1
        try:
            yield BrowserSession(browser=None, context=None, page=page)
        finally:
            page.closed += 1
    return factory


def failing_session_factory(page: FakePage):
    @asynccontextmanager
    async def factory(settings: Settings):
        page.launched += 1
        raise ResourceError("Browser launch failed: executable doesn't exist")
        yield  # pragma: no cover
    return factory


async def _no_sleep(seconds: float) -> None:
    await asyncio.sleep(0)


def quiet_humanizer(seed: int = 7) -> Humanizer:
    return Humanizer(random.Random(seed), sleep=_no_sleep)


def make_settings(**overrides) -> Settings:
    values = {"username": "analyst", "password": "secret", "job_timeout_s": 30}
    values.update(overrides)
    return Settings(**values)
