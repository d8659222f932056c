"""Resolve logical UI targets to live page handles.

``first_success`` is the one fallback combinator used across the project:
it runs ordered attempts until one returns, collecting a short error per
failed attempt. ``SelectorResolver`` applies it to the locator chains in
``locators.TARGETS``.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from coverage_backend.errors import TargetNotFound
from coverage_backend.locators import TARGETS, Locator

log = logging.getLogger("resolver")

T = TypeVar("T")

Attempt = tuple[str, Callable[[], Awaitable[T]]]


class StrategyExhausted(Exception):
    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__("; ".join(errors) or "no attempts")


def _short(exc: BaseException) -> str:
    text = str(exc).strip().splitlines()
    first = text[0] if text else ""
    return f"{exc.__class__.__name__}: {first[:160]}" if first else exc.__class__.__name__


async def first_success(attempts: Iterable[Attempt]) -> tuple[str, T]:
    """Run attempts in order and return ``(label, value)`` of the first that succeeds.

    Attempts after the first success are never started. Cancellation is not
    an attempt failure and propagates immediately.
    """
    errors: list[str] = []
    for label, attempt in attempts:
        try:
            value = await attempt()
        except Exception as exc:
            errors.append(f"{label} -> {_short(exc)}")
            continue
        return label, value
    raise StrategyExhausted(errors)


class SelectorResolver:
    def __init__(
        self,
        page,
        targets: dict[str, tuple[Locator, ...]] | None = None,
        scale_timeout: Callable[[int], int] | None = None,
    ) -> None:
        self.page = page
        self.targets = TARGETS if targets is None else targets
        self._scale = scale_timeout or (lambda ms: ms)

    def chain(self, target: str) -> tuple[Locator, ...]:
        return self.targets.get(target, ())

    def build(self, locator: Locator, **params: str):
        """Turn a css/text Locator into a Playwright locator (no waiting)."""
        selector = locator.selector.format(**params) if params else locator.selector
        if locator.kind == "text":
            loc = self.page.get_by_text(selector)
        else:
            loc = self.page.locator(selector)
        if locator.has_text:
            pattern = locator.has_text
            if params:
                pattern = pattern.format(**{k: re.escape(v) for k, v in params.items()})
            loc = loc.filter(has_text=re.compile(pattern, re.IGNORECASE))
        if locator.nth is not None:
            loc = loc.nth(locator.nth)
        return loc

    async def _attempt(self, locator: Locator, params: dict[str, str]) -> Any:
        if locator.kind == "script":
            handle = await self.page.evaluate_handle(locator.selector)
            element = handle.as_element()
            if element is None:
                await handle.dispose()
                raise LookupError("script returned no element")
            return element
        loc = self.build(locator, **params)
        await loc.wait_for(state=locator.state, timeout=self._scale(locator.timeout_ms))
        return loc

    async def resolve(self, target: str, **params: str) -> Any:
        """Return a handle for ``target`` from the first locator that resolves.

        Raises:
            TargetNotFound: when every locator in the chain fails.
        """
        chain = self.chain(target)
        if not chain:
            raise TargetNotFound(target)

        attempts = [
            (loc.describe(), lambda loc=loc: self._attempt(loc, params))
            for loc in chain
        ]
        try:
            label, handle = await first_success(attempts)
        except StrategyExhausted as exc:
            log.debug("Target %s exhausted: %s", target, exc)
            raise TargetNotFound(target, exc.errors) from None

        if label != attempts[0][0]:
            log.info("Target %s resolved via fallback %s", target, label)
        else:
            log.debug("Target %s resolved via %s", target, label)
        return handle

    def locate_all(self, target: str, **params: str):
        """Playwright locator for the whole match set of a target's first locator."""
        chain = self.chain(target)
        if not chain:
            raise TargetNotFound(target)
        return self.build(chain[0], **params)
