"""
Automation Controller — FX Harvest generate-and-collect loop

Drives an externally rendered image-generation page through repeated
prompt entry and generate clicks, scans the page for new result images,
and saves each unique image exactly once. Duplicates are filtered twice:
by reference (already-seen ``src``) and by content (same SHA-256 digest
behind a different reference).

Steps run strictly one after another on a single asyncio task. Every wait
is an ``asyncio.sleep`` so progress listeners and ``stop()`` calls from
other tasks interleave freely. Stop requests are honoured on entry to the
next state, never in the middle of one.

The generation wait is blind: the page exposes no completion event, so
``Timings.generation_wait`` must be long enough for a typical render.

Usage:
    from fxharvest.automation_controller import AutomationController

    controller = AutomationController(page, store=ImageStore(Path("downloads")))
    session = await controller.run(count=10, prompt_source="quotes.csv")
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from fxharvest.dedup import ContentDeduplicator
from fxharvest.errors import (
    ActuationNotReady,
    FetchError,
    PersistError,
    SessionUnavailable,
    StepError,
)
from fxharvest.image_fetcher import ImageFetcher
from fxharvest.image_store import ImageStore
from fxharvest.page_driver import (
    ActCommand,
    ActionType,
    PageActuator,
    PageProber,
    ProbeQuery,
)
from fxharvest.progress import ProgressBroadcaster, ProgressListener
from fxharvest.prompt_source import (
    DEFAULT_PROMPT,
    DEFAULT_TEMPLATE,
    PromptRotation,
    PromptSourceSpec,
    describe_source,
)

logger = logging.getLogger("automation_controller")

if not logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(
        logging.Formatter("[%(asctime)s] %(name)s.%(levelname)s: %(message)s", datefmt="%H:%M:%S")
    )
    logger.addHandler(_handler)
    logger.propagate = False

# ---------------------------------------------------------------------------
# Constants & helpers
# ---------------------------------------------------------------------------

DEFAULT_TARGET_COUNT = 100
SESSION_HISTORY_FILE = "sessions.json"
MAX_SESSION_HISTORY = 200


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _load_json(path: Path, default: Any = None) -> Any:
    if default is None:
        default = {}
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except (FileNotFoundError, json.JSONDecodeError):
        return default


def _save_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    with open(tmp, "w", encoding="utf-8") as fh:
        json.dump(data, fh, indent=2, default=str)
    os.replace(str(tmp), str(path))


def load_history(data_dir: Path, limit: int = 20) -> List[Dict[str, Any]]:
    """Session summaries recorded under *data_dir*, newest last."""
    entries = _load_json(Path(data_dir) / SESSION_HISTORY_FILE, default=[])
    if not isinstance(entries, list):
        return []
    return entries[-limit:] if limit > 0 else entries


# ---------------------------------------------------------------------------
# Enums & data classes
# ---------------------------------------------------------------------------

class ControllerState(str, Enum):
    IDLE = "idle"
    PROMPTING = "prompting"
    AWAITING_GENERATION = "awaiting_generation"
    SCANNING = "scanning"
    SAVING = "saving"
    STOPPED = "stopped"
    FINISHED = "finished"


@dataclass
class Timings:
    """Fixed delays of the loop, in seconds."""
    settle_delay: float = 1.0
    generation_wait: float = 25.0
    retry_backoff: float = 3.0
    iteration_delay: float = 2.0
    error_backoff: float = 5.0


@dataclass
class Session:
    """State of one run, from start command to finish or stop."""
    target_count: int = DEFAULT_TARGET_COUNT
    prompt_source: str = "default"
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    iteration: int = 0
    running: bool = True
    current_prompt: str = ""
    seen_references: Set[str] = field(default_factory=set)
    deduplicator: ContentDeduplicator = field(default_factory=ContentDeduplicator)
    images_saved: int = 0
    duplicates_skipped: int = 0
    fetch_failures: int = 0
    persist_failures: int = 0
    retries: int = 0
    step_errors: int = 0
    started_at: str = field(default_factory=_now_iso)
    ended_at: str = ""
    final_state: str = ""

    @property
    def remaining(self) -> int:
        return max(0, self.target_count - self.iteration)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "target_count": self.target_count,
            "iteration": self.iteration,
            "running": self.running,
            "prompt_source": self.prompt_source,
            "current_prompt": self.current_prompt,
            "references_seen": len(self.seen_references),
            "unique_images": len(self.deduplicator),
            "images_saved": self.images_saved,
            "duplicates_skipped": self.duplicates_skipped,
            "fetch_failures": self.fetch_failures,
            "persist_failures": self.persist_failures,
            "retries": self.retries,
            "step_errors": self.step_errors,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "final_state": self.final_state,
        }


# ---------------------------------------------------------------------------
# AutomationController
# ---------------------------------------------------------------------------

class AutomationController:
    """
    The generate-scan-save step machine.

    States: idle → prompting → awaiting_generation → scanning → saving →
    prompting ... → finished, with stopped reachable from any state entry.

    Args:
        prober: Observes the page (generate control, prompt input, images).
        actuator: Acts on the page. Defaults to *prober* when it does both.
        fetcher: Resolves image references to bytes.
        store: Persists unique images.
        listeners: Progress listeners (status text, count, finished).
        timings: Loop delays.
        data_dir: Where session summaries are appended; None disables it.
        sleep: Awaitable delay function, ``asyncio.sleep`` by default.
        max_step_errors: Stop after this many consecutive step errors
            (0 keeps retrying forever).
    """

    def __init__(
        self,
        prober: PageProber,
        actuator: Optional[PageActuator] = None,
        fetcher: Optional[ImageFetcher] = None,
        store: Optional[ImageStore] = None,
        listeners: Optional[Iterable[ProgressListener]] = None,
        timings: Optional[Timings] = None,
        data_dir: Optional[Path] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        prompt_template: str = DEFAULT_TEMPLATE,
        default_prompt: str = DEFAULT_PROMPT,
        max_step_errors: int = 0,
    ):
        self.prober = prober
        self.actuator = actuator if actuator is not None else prober
        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher or ImageFetcher()
        self.store = store or ImageStore(Path("downloads"))
        self.progress = ProgressBroadcaster(listeners)
        self.timings = timings or Timings()
        self._data_dir = Path(data_dir) if data_dir is not None else None
        self._sleep = sleep or asyncio.sleep
        self.prompt_template = prompt_template
        self.default_prompt = default_prompt
        self.max_step_errors = max_step_errors

        self._state = ControllerState.IDLE
        self._session: Optional[Session] = None
        self._rotation = PromptRotation(None, default=default_prompt)
        self._task: Optional[asyncio.Task] = None
        self._active = False
        self._consecutive_errors = 0

    # ── Properties ──

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def is_running(self) -> bool:
        return self._session is not None and self._session.running

    @property
    def prompts(self) -> List[str]:
        return list(self._rotation.prompts)

    # ── Commands ──

    def start(
        self,
        count: Optional[int] = DEFAULT_TARGET_COUNT,
        prompt_source: PromptSourceSpec = None,
    ) -> Optional[asyncio.Task]:
        """Begin a session on the running event loop.

        Returns the loop task, or None when a session is already active.
        """
        session = self._begin(count, prompt_source)
        if session is None:
            return None
        self._task = asyncio.get_running_loop().create_task(self._loop(session))
        # Covers a task cancelled before its first step.
        self._task.add_done_callback(lambda _task: self._release(session))
        return self._task

    async def run(
        self,
        count: Optional[int] = DEFAULT_TARGET_COUNT,
        prompt_source: PromptSourceSpec = None,
    ) -> Optional[Session]:
        """Run a session to completion or stop. None if one is already active."""
        session = self._begin(count, prompt_source)
        if session is None:
            return None
        await self._loop(session)
        return session

    def stop(self) -> None:
        """Request a cooperative stop. Safe to call repeatedly."""
        if self._session is None or not self._session.running:
            logger.debug("Stop requested with no active session")
            return
        self._session.running = False
        logger.info("Stop requested (session %s, iteration %d/%d)",
                    self._session.id, self._session.iteration, self._session.target_count)
        self.progress.status("Stopping...")

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "state": self._state.value,
            "session": self._session.to_dict() if self._session else None,
            "prompts": len(self._rotation),
        }

    def history(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Recent session summaries, newest last."""
        if self._data_dir is None:
            return []
        return load_history(self._data_dir, limit)

    # ── Session lifecycle ──

    def _begin(self, count: Optional[int], prompt_source: PromptSourceSpec) -> Optional[Session]:
        # A stopped session stays active until its loop has run _end.
        if self._active or self.is_running:
            logger.info("Session %s already active, start ignored", self._session.id)
            return None
        target = DEFAULT_TARGET_COUNT if count is None else int(count)
        if target < 1:
            raise ValueError(f"count must be a positive integer, got {count!r}")

        self._rotation = PromptRotation.from_source(
            prompt_source, template=self.prompt_template, default=self.default_prompt,
        )
        session = Session(target_count=target, prompt_source=describe_source(prompt_source))
        self._session = session
        self._active = True
        self._consecutive_errors = 0
        self.store.use_deduplicator(session.deduplicator)
        self._state = ControllerState.IDLE

        logger.info("Start: %d iterations, %d prompt(s) from %s",
                    target, len(self._rotation), session.prompt_source)
        self.progress.status(f"Started: {target} iterations")
        return session

    def _end(self, session: Session) -> None:
        session.running = False
        session.ended_at = _now_iso()
        session.final_state = self._state.value
        logger.info("Session %s ended (%s): %d/%d iterations, %d images saved",
                    session.id, session.final_state, session.iteration,
                    session.target_count, session.images_saved)
        if self._data_dir is not None:
            try:
                path = self._data_dir / SESSION_HISTORY_FILE
                entries = _load_json(path, default=[])
                if not isinstance(entries, list):
                    entries = []
                entries.append(session.to_dict())
                _save_json(path, entries[-MAX_SESSION_HISTORY:])
            except OSError as exc:
                logger.error("Failed to record session summary: %s", exc)

    def _release(self, session: Session) -> None:
        session.running = False
        if self._session is session:
            self._active = False

    def _enter(self, session: Session, state: ControllerState) -> bool:
        """Move to *state* unless *session* was stopped; then move to stopped."""
        if not session.running:
            self._set_state(ControllerState.STOPPED)
            return False
        self._set_state(state)
        return True

    def _set_state(self, state: ControllerState) -> None:
        if state != self._state:
            logger.debug("State %s -> %s", self._state.value, state.value)
        self._state = state

    def _halt(self, session: Session, message: str) -> None:
        session.running = False
        self._set_state(ControllerState.STOPPED)
        self.progress.status(message)

    # ── Main loop ──

    async def _loop(self, session: Session) -> None:
        try:
            while True:
                if not self._enter(session, ControllerState.PROMPTING):
                    self.progress.status("Stopped")
                    break
                if session.iteration >= session.target_count:
                    self._finish(session)
                    break

                try:
                    completed = await self._run_iteration(session)
                except SessionUnavailable as exc:
                    logger.error("Page unavailable, stopping: %s", exc)
                    self._halt(session, f"Stopped: page unavailable ({exc})")
                    break
                except ActuationNotReady as exc:
                    session.retries += 1
                    logger.info("Generate control not ready (%s), retrying in %.1fs",
                                exc, self.timings.retry_backoff)
                    self.progress.status(f"Waiting... ({exc})")
                    await self._sleep(self.timings.retry_backoff)
                    continue
                except Exception as exc:
                    error = exc if isinstance(exc, StepError) else StepError(str(exc) or type(exc).__name__)
                    session.step_errors += 1
                    self._consecutive_errors += 1
                    logger.error("Step error (%d in a row): %s", self._consecutive_errors, error)
                    self.progress.status(f"Error: {error}")
                    if self.max_step_errors and self._consecutive_errors >= self.max_step_errors:
                        self._halt(session, f"Stopped after {self._consecutive_errors} consecutive errors")
                        break
                    await self._sleep(self.timings.error_backoff)
                    continue

                if not completed:
                    self.progress.status("Stopped")
                    break

                self._consecutive_errors = 0
                if session.iteration >= session.target_count:
                    self._finish(session)
                    break
                await self._sleep(self.timings.iteration_delay)
        finally:
            try:
                self._end(session)
                if self._owns_fetcher:
                    await self.fetcher.close()
            finally:
                self._release(session)

    def _finish(self, session: Session) -> None:
        self._set_state(ControllerState.FINISHED)
        session.running = False
        self.progress.status(f"Finished: {session.iteration} iterations, "
                             f"{session.images_saved} images saved")
        self.progress.finished()

    async def _run_iteration(self, session: Session) -> bool:
        """One generate-and-scan iteration. False when stopped part way."""
        prompt = self._rotation.prompt_for(session.iteration)
        session.current_prompt = prompt
        self.progress.status(f"Generating... ({session.iteration + 1}/{session.target_count})")

        await self._enter_prompt(prompt)
        await self._sleep(self.timings.settle_delay)
        await self._click_generate()

        if not self._enter(session, ControllerState.AWAITING_GENERATION):
            return False
        self.progress.status("Waiting for generation to finish...")
        await self._sleep(self.timings.generation_wait)

        if not self._enter(session, ControllerState.SCANNING):
            return False
        self.progress.status("Scanning for images...")
        new_refs = await self._scan(session)

        if not self._enter(session, ControllerState.SAVING):
            return False
        await self._save_batch(session, new_refs)

        session.iteration += 1
        self.progress.count(session.iteration)
        return True

    # ── Steps ──

    async def _enter_prompt(self, prompt: str) -> None:
        """Focus, clear, and type *prompt*. A missing input is reported, not fatal."""
        for command in (
            ActCommand(ActionType.FOCUS, ProbeQuery.PROMPT_INPUT),
            ActCommand(ActionType.CLEAR, ProbeQuery.PROMPT_INPUT),
            ActCommand(ActionType.TYPE, ProbeQuery.PROMPT_INPUT, text=prompt),
        ):
            result = await self.actuator.act(command)
            if result.not_found:
                logger.warning("Prompt input not found (%s), generating anyway", result.detail)
                self.progress.status("Prompt input not found, generating anyway")
                return
            if not result.success:
                logger.warning("%s failed: %s", command.action.value, result.detail)

    async def _click_generate(self) -> None:
        probe = await self.prober.probe(ProbeQuery.GENERATE_CONTROL)
        if not probe.clickable:
            raise ActuationNotReady(probe.detail or "Button not found or disabled")
        result = await self.actuator.act(ActCommand(ActionType.CLICK, ProbeQuery.GENERATE_CONTROL))
        if not result.success:
            raise ActuationNotReady(result.detail or "Button not found or disabled")
        logger.debug("Generate clicked")

    async def _scan(self, session: Session) -> List[str]:
        probe = await self.prober.probe(ProbeQuery.RESULT_IMAGES)
        new_refs: List[str] = []
        for ref in probe.references:
            if not ref or ref in session.seen_references:
                continue
            session.seen_references.add(ref)
            new_refs.append(ref)
        logger.info("Scan: %d candidates, %d new", len(probe.references), len(new_refs))
        return new_refs

    async def _save_batch(self, session: Session, references: List[str]) -> int:
        if not references:
            self.progress.status("No new images found")
            return 0

        self.progress.status(f"Processing {len(references)} candidate images...")
        saved = duplicates = failed = 0
        for position, ref in enumerate(references):
            label = f"{session.iteration}_{position}"
            try:
                data = await self.fetcher.fetch(ref)
                if self.store.save_if_unique(data, label):
                    saved += 1
                    session.images_saved += 1
                else:
                    duplicates += 1
                    session.duplicates_skipped += 1
            except FetchError as exc:
                failed += 1
                session.fetch_failures += 1
                logger.warning("Fetch failed for %s: %s", ref[:60], exc)
                self.progress.status(f"Image skipped: {exc}")
            except PersistError as exc:
                failed += 1
                session.persist_failures += 1
                logger.error("Save failed for %s: %s", label, exc)
                self.progress.status(f"Save failed: {exc}")
            except Exception as exc:
                failed += 1
                session.fetch_failures += 1
                logger.error("Unexpected failure processing %s: %s", ref[:60], exc)
                self.progress.status(f"Image skipped: {exc}")

        if saved:
            self.progress.status(f"Saved {saved} new images")
        elif failed and duplicates:
            self.progress.status(f"No new images ({duplicates} duplicates, {failed} failed)")
        elif failed:
            self.progress.status(f"No new images ({failed} failed)")
        else:
            self.progress.status("No new images (duplicates only)")
        return saved
