"""
Playwright page adapter — implements PageProber and PageActuator.

Launches Chromium (or attaches to a running browser over CDP), opens the
image-generation tool, and answers the controller's probes with small DOM
scripts. All page-specific markers live in ``PAGE_MARKERS`` and
``SCRIPTS``; if the tool's markup changes, only this table needs updating.

Usage:
    async with PlaywrightPage(url, headless=False) as page:
        controller = AutomationController(page)
        await controller.run(count=5)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from fxharvest.errors import SessionUnavailable
from fxharvest.page_driver import (
    ActCommand,
    ActionType,
    ActResult,
    ProbeQuery,
    ProbeResult,
)

logger = logging.getLogger("playwright_page")

# ---------------------------------------------------------------------------
# Page heuristics
# ---------------------------------------------------------------------------

PAGE_MARKERS: Dict[str, Any] = {
    "generate_labels": ["作成", "Generate", "Create"],
    "prompt_selector": 'textarea, [contenteditable="true"], div[role="textbox"], input[type="text"]',
    "result_alt_markers": ["生成された画像", "Generated image"],
    "min_image_size": 200,
}

SCRIPTS: Dict[str, str] = {
    "find_generate": """
        (labels) => {
            const buttons = Array.from(document.querySelectorAll('button'));
            const btn = buttons.find(b => labels.some(l => (b.innerText || '').includes(l)));
            if (!btn) return {found: false, enabled: false, visible: false};
            return {found: true, enabled: !btn.disabled, visible: btn.offsetParent !== null};
        }
    """,
    "click_generate": """
        (labels) => {
            const buttons = Array.from(document.querySelectorAll('button'));
            const btn = buttons.find(b => labels.some(l => (b.innerText || '').includes(l)));
            if (btn && !btn.disabled && btn.offsetParent !== null) {
                btn.click();
                return 'Clicked';
            }
            return 'Button not found or disabled';
        }
    """,
    "find_prompt": """
        (selector) => {
            const el = Array.from(document.querySelectorAll(selector))
                .find(e => e.offsetParent !== null && !e.disabled);
            if (!el) return {found: false, enabled: false, visible: false};
            return {found: true, enabled: true, visible: true};
        }
    """,
    "focus_prompt": """
        (selector) => {
            const el = Array.from(document.querySelectorAll(selector))
                .find(e => e.offsetParent !== null && !e.disabled);
            if (!el) return false;
            el.focus();
            return true;
        }
    """,
    "result_images": """
        ({markers, minSize}) => Array.from(document.querySelectorAll('img'))
            .filter(img => {
                const isResult = !!img.alt && markers.some(m => img.alt.includes(m));
                const isLarge = img.width > minSize && img.height > minSize;
                return (isResult || isLarge) && img.src;
            })
            .map(img => img.src)
    """,
}

SELECT_ALL_KEY = "ControlOrMeta+A"
NAVIGATION_TIMEOUT_MS = 60_000


class PlaywrightPage:
    """Browser-backed prober and actuator for one page."""

    def __init__(
        self,
        target_url: str,
        headless: bool = False,
        cdp_url: str = "",
        markers: Optional[Dict[str, Any]] = None,
    ):
        self.target_url = target_url
        self.headless = headless
        self.cdp_url = cdp_url
        self.markers = dict(PAGE_MARKERS, **(markers or {}))
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._page: Optional[Page] = None

    # ── Lifecycle ──

    async def open(self) -> None:
        self._playwright = await async_playwright().start()
        if self.cdp_url:
            self._browser = await self._playwright.chromium.connect_over_cdp(self.cdp_url)
            contexts = self._browser.contexts
            if contexts:
                self._page = await contexts[0].new_page()
            else:
                self._page = await self._browser.new_page()
            logger.info("Attached to browser at %s", self.cdp_url)
        else:
            self._browser = await self._playwright.chromium.launch(headless=self.headless)
            self._page = await self._browser.new_page()
            logger.info("Launched Chromium (headless=%s)", self.headless)
        await self._page.goto(self.target_url, wait_until="domcontentloaded",
                              timeout=NAVIGATION_TIMEOUT_MS)
        logger.info("Opened %s", self.target_url)

    async def close(self) -> None:
        try:
            if self._browser is not None:
                await self._browser.close()
        except PlaywrightError as exc:
            logger.warning("Browser close failed: %s", exc)
        if self._playwright is not None:
            await self._playwright.stop()
        self._playwright = None
        self._browser = None
        self._page = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._page is not None and not self._page.is_closed()

    def _require_page(self) -> Page:
        if not self.is_open:
            raise SessionUnavailable("Target page is closed")
        return self._page

    async def _evaluate(self, script: str, arg: Any = None) -> Any:
        page = self._require_page()
        try:
            return await page.evaluate(SCRIPTS[script], arg)
        except PlaywrightError as exc:
            if page.is_closed():
                raise SessionUnavailable(f"Target page closed during {script}") from exc
            raise

    # ── PageProber ──

    async def probe(self, query: ProbeQuery) -> ProbeResult:
        if query == ProbeQuery.GENERATE_CONTROL:
            found = await self._evaluate("find_generate", self.markers["generate_labels"])
            return self._to_result(found, "generate button")
        if query == ProbeQuery.PROMPT_INPUT:
            found = await self._evaluate("find_prompt", self.markers["prompt_selector"])
            return self._to_result(found, "prompt input")
        if query == ProbeQuery.RESULT_IMAGES:
            refs = await self._evaluate("result_images", {
                "markers": self.markers["result_alt_markers"],
                "minSize": self.markers["min_image_size"],
            })
            refs = [r for r in (refs or []) if isinstance(r, str)]
            return ProbeResult(found=bool(refs), enabled=True, visible=True,
                               references=refs, detail=f"{len(refs)} images")
        raise ValueError(f"Unsupported probe: {query}")

    @staticmethod
    def _to_result(raw: Optional[dict], what: str) -> ProbeResult:
        raw = raw or {}
        result = ProbeResult(
            found=bool(raw.get("found")),
            enabled=bool(raw.get("enabled")),
            visible=bool(raw.get("visible")),
        )
        if not result.found:
            result.detail = f"{what} not found"
        elif not result.clickable:
            result.detail = f"{what} disabled or hidden"
        return result

    # ── PageActuator ──

    async def act(self, command: ActCommand) -> ActResult:
        if command.action == ActionType.CLICK:
            if command.target != ProbeQuery.GENERATE_CONTROL:
                raise ValueError(f"Cannot click {command.target.value}")
            outcome = await self._evaluate("click_generate", self.markers["generate_labels"])
            if outcome == "Clicked":
                return ActResult.ok("clicked")
            return ActResult.missing(str(outcome))

        if command.target != ProbeQuery.PROMPT_INPUT:
            raise ValueError(f"Cannot {command.action.value} {command.target.value}")
        focused = await self._evaluate("focus_prompt", self.markers["prompt_selector"])
        if not focused:
            return ActResult.missing("prompt input not found")

        page = self._require_page()
        if command.action == ActionType.FOCUS:
            return ActResult.ok("focused")
        if command.action == ActionType.CLEAR:
            await page.keyboard.press(SELECT_ALL_KEY)
            await page.keyboard.press("Backspace")
            return ActResult.ok("cleared")
        if command.action == ActionType.TYPE:
            await page.keyboard.insert_text(command.text)
            return ActResult.ok(f"typed {len(command.text)} chars")
        raise ValueError(f"Unsupported action: {command.action}")

    # ── Diagnostics ──

    async def snapshot(self) -> Dict[str, Any]:
        """Probe every role once; used by the CLI ``probe`` command."""
        out: Dict[str, Any] = {"url": self._require_page().url}
        for query in ProbeQuery:
            out[query.value] = (await self.probe(query)).to_dict()
        return out
