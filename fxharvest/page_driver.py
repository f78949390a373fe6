"""
Page Prober / Page Actuator — the controller's view of the external page.

The controller never touches the browser directly. It asks a prober to
observe elements by semantic role and an actuator to act on them. Both
report "not found" as a normal result; only a vanished page is an error
(``SessionUnavailable``).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import List, Protocol, runtime_checkable


class ProbeQuery(str, Enum):
    """Semantic roles the controller looks for on the page."""
    GENERATE_CONTROL = "generate_control"
    PROMPT_INPUT = "prompt_input"
    RESULT_IMAGES = "result_images"


class ActionType(str, Enum):
    """Input actions the controller performs."""
    FOCUS = "focus"
    CLEAR = "clear"
    TYPE = "type"
    CLICK = "click"


@dataclass
class ProbeResult:
    """What a probe observed."""
    found: bool = False
    enabled: bool = False
    visible: bool = False
    references: List[str] = field(default_factory=list)
    detail: str = ""

    @property
    def clickable(self) -> bool:
        return self.found and self.enabled and self.visible

    @classmethod
    def not_found(cls, detail: str = "not found") -> "ProbeResult":
        return cls(found=False, detail=detail)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["clickable"] = self.clickable
        return d


@dataclass
class ActCommand:
    """A single input action against one element role."""
    action: ActionType
    target: ProbeQuery
    text: str = ""

    def __repr__(self) -> str:
        return f"ActCommand({self.action.value}, {self.target.value}, text={self.text[:20]!r})"


@dataclass
class ActResult:
    """Outcome of an input action."""
    success: bool = False
    not_found: bool = False
    detail: str = ""

    @classmethod
    def ok(cls, detail: str = "") -> "ActResult":
        return cls(success=True, detail=detail)

    @classmethod
    def missing(cls, detail: str = "not found") -> "ActResult":
        return cls(success=False, not_found=True, detail=detail)

    def to_dict(self) -> dict:
        return asdict(self)


@runtime_checkable
class PageProber(Protocol):
    async def probe(self, query: ProbeQuery) -> ProbeResult:
        ...


@runtime_checkable
class PageActuator(Protocol):
    async def act(self, command: ActCommand) -> ActResult:
        ...
