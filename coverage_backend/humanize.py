"""Human-like timing and pointer behaviour for portal interactions.

Randomised pauses, per-character typing and a jittered pointer path before
each click. No knowledge of the portal; works with any Playwright Locator or
ElementHandle. The random source and sleep coroutine are injectable so tests
can run deterministically and without real delays.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable

# (min_ms, max_ms) per wait bucket
BUCKETS: dict[str, tuple[int, int]] = {
    "short": (200, 400),
    "medium": (500, 900),
    "long": (1200, 2000),
}

KEYSTROKE_MS = (30, 70)
PRE_TYPE_MS = (80, 150)
PRE_CLICK_MS = (30, 80)
CLEAR_MS = (150, 300)
MOVE_STEPS = (2, 3)
OFFSET_X = 5
OFFSET_Y = 3
MIN_PAUSE_MS = 80

Sleeper = Callable[[float], Awaitable[Any]]


class Humanizer:
    def __init__(self, rng: random.Random | None = None, sleep: Sleeper | None = None) -> None:
        self.rng = rng or random.Random()
        self._sleep = sleep or asyncio.sleep

    def between(self, lo: int, hi: int) -> int:
        return self.rng.randint(lo, hi)

    async def sleep_ms(self, ms: int) -> None:
        await self._sleep(ms / 1000)

    async def wait(self, bucket: str = "short") -> None:
        """Sleep for a random duration from a named bucket."""
        try:
            lo, hi = BUCKETS[bucket]
        except KeyError:
            raise ValueError(f"Unknown wait bucket: {bucket!r}") from None
        await self.sleep_ms(self.between(lo, hi))

    async def pause(self, base_ms: int) -> None:
        """Sleep around ``base_ms``: usually 10-30% longer, sometimes a little shorter."""
        variation = base_ms * (0.1 + self.rng.random() * 0.2)
        if self.rng.random() > 0.5:
            delay = base_ms + variation
        else:
            delay = base_ms - variation * 0.3
        await self.sleep_ms(max(int(delay), MIN_PAUSE_MS))

    def click_point(self, box: dict[str, float]) -> tuple[float, float]:
        """Pick a point near the centre of a bounding box, kept inside it."""
        cx = box["x"] + box["width"] / 2 + self.between(-OFFSET_X, OFFSET_X)
        cy = box["y"] + box["height"] / 2 + self.between(-OFFSET_Y, OFFSET_Y)
        cx = min(max(cx, box["x"]), box["x"] + box["width"])
        cy = min(max(cy, box["y"]), box["y"] + box["height"])
        return cx, cy

    async def click(self, page, target, **click_opts) -> None:
        """Move the pointer to a jittered point on ``target``, then click it."""
        box = await target.bounding_box()
        if box:
            x, y = self.click_point(box)
            await page.mouse.move(x, y, steps=self.between(*MOVE_STEPS))
            await self.sleep_ms(self.between(*PRE_CLICK_MS))
        await target.click(**click_opts)

    async def type(self, page, target, text: str, clear: bool = False) -> None:
        """Focus ``target`` and type ``text`` one character at a time."""
        await self.click(page, target)
        await self.wait("short")
        if clear:
            await page.keyboard.press("Control+A")
            await self.sleep_ms(self.between(*CLEAR_MS))
        await self.sleep_ms(self.between(*PRE_TYPE_MS))
        for char in text:
            await page.keyboard.type(char)
            await self.sleep_ms(self.between(*KEYSTROKE_MS))

    async def move_away(self, page) -> None:
        """Park the pointer in a neutral corner so hover menus close."""
        await page.mouse.move(100, 100)
