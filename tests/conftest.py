"""
Shared fixtures for the FX Harvest test suite.

Provides image fixtures, temp directories, a scripted fake page, and
reusable aiohttp mocks so that all tests run WITHOUT a browser or network.
"""

import base64
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from fxharvest.automation_controller import Timings
from fxharvest.page_driver import (
    ActCommand,
    ActionType,
    ActResult,
    ProbeQuery,
    ProbeResult,
)


# ---------------------------------------------------------------------------
# Image fixtures
# ---------------------------------------------------------------------------

# 1x1 transparent PNG
PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
OTHER_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24 + b"other-image"


@pytest.fixture
def png_bytes():
    return PNG_BYTES


@pytest.fixture
def other_bytes():
    return OTHER_BYTES


@pytest.fixture
def png_data_url():
    return "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")


# ---------------------------------------------------------------------------
# Directory fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def output_dir(tmp_path):
    d = tmp_path / "downloads"
    d.mkdir()
    return d


@pytest.fixture
def data_dir(tmp_path):
    d = tmp_path / "data"
    d.mkdir()
    return d


@pytest.fixture
def quotes_csv(tmp_path):
    path = tmp_path / "quotes.csv"
    path.write_text(
        '"quote","author"\n'
        '"Stay hungry, stay foolish","Steve Jobs"\n'
        '"Less is more","Ludwig Mies van der Rohe"\n',
        encoding="utf-8",
    )
    return path


# ---------------------------------------------------------------------------
# Fake page
# ---------------------------------------------------------------------------

class FakePage:
    """Scripted prober + actuator.

    ``generate`` is a list of booleans consumed per generate probe (True when
    exhausted). ``batches`` is a list of reference lists consumed per image
    scan; the last batch repeats. ``failures`` maps a query to exceptions
    raised by its next probes.
    """

    def __init__(
        self,
        generate: Optional[List[bool]] = None,
        batches: Optional[List[List[str]]] = None,
        prompt_found: bool = True,
        failures: Optional[Dict[ProbeQuery, List[Exception]]] = None,
    ):
        self.generate = list(generate or [])
        self.batches = list(batches or [])
        self.prompt_found = prompt_found
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.calls: List[tuple] = []

    async def probe(self, query: ProbeQuery) -> ProbeResult:
        self.calls.append(("probe", query))
        pending = self.failures.get(query)
        if pending:
            raise pending.pop(0)
        if query == ProbeQuery.GENERATE_CONTROL:
            ok = self.generate.pop(0) if self.generate else True
            if ok:
                return ProbeResult(found=True, enabled=True, visible=True)
            return ProbeResult(found=True, enabled=False, visible=True,
                               detail="Button not found or disabled")
        if query == ProbeQuery.RESULT_IMAGES:
            if len(self.batches) > 1:
                refs = self.batches.pop(0)
            else:
                refs = self.batches[0] if self.batches else []
            return ProbeResult(found=bool(refs), enabled=True, visible=True, references=list(refs))
        return ProbeResult(found=self.prompt_found, enabled=True, visible=True)

    async def act(self, command: ActCommand) -> ActResult:
        self.calls.append(("act", command.action, command.text))
        if command.target == ProbeQuery.PROMPT_INPUT and not self.prompt_found:
            return ActResult.missing("prompt input not found")
        return ActResult.ok()

    @property
    def typed(self) -> List[str]:
        return [c[2] for c in self.calls if c[0] == "act" and c[1] == ActionType.TYPE]

    @property
    def clicks(self) -> int:
        return sum(1 for c in self.calls if c[0] == "act" and c[1] == ActionType.CLICK)


class RecordingListener:
    def __init__(self):
        self.statuses: List[str] = []
        self.counts: List[int] = []
        self.finished = 0

    def on_status(self, text):
        self.statuses.append(text)

    def on_count(self, count):
        self.counts.append(count)

    def on_finished(self):
        self.finished += 1


@pytest.fixture
def fake_page():
    return FakePage()


@pytest.fixture
def make_page():
    return FakePage


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def fast_timings():
    return Timings(settle_delay=0, generation_wait=0, retry_backoff=0,
                   iteration_delay=0, error_backoff=0)


@pytest.fixture
def recorded_sleeps():
    """A sleep replacement that returns immediately and records delays."""
    delays: List[float] = []

    async def _sleep(seconds):
        delays.append(seconds)

    _sleep.delays = delays
    return _sleep


# ---------------------------------------------------------------------------
# HTTP mock fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_aiohttp_response():
    """Create a mock aiohttp response factory."""

    def _make(status=200, body=b"", headers=None):
        resp = AsyncMock()
        resp.status = status
        resp.read = AsyncMock(return_value=body)
        resp.headers = headers or {"Content-Type": "image/png"}
        resp.__aenter__ = AsyncMock(return_value=resp)
        resp.__aexit__ = AsyncMock(return_value=False)
        return resp

    return _make


@pytest.fixture
def mock_aiohttp_session():
    """Mock aiohttp ClientSession whose .get() is an async context manager."""

    def _make(response=None, error=None):
        session = AsyncMock()
        if error is not None:
            session.get = MagicMock(side_effect=error)
        else:
            session.get = MagicMock(return_value=response)
        session.close = AsyncMock()
        session.closed = False
        return session

    return _make
