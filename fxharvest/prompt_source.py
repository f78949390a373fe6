"""
Prompt source — where the controller gets the text it types.

A source can be a quote CSV file (two columns: quote text, author; header
row first), a list of prompt strings, one prompt string, or nothing. Prompts
are handed out round-robin by iteration index, so a retried iteration gets
the same prompt again.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

logger = logging.getLogger("prompt_source")

DEFAULT_PROMPT = "A quiet harbor town at dawn, soft watercolor light"
DEFAULT_AUTHOR = "Unknown"
DEFAULT_TEMPLATE = "{text}"

PromptSourceSpec = Union[None, str, Path, Sequence[str]]


@dataclass(frozen=True)
class QuoteEntry:
    """One row of the quote file."""
    text: str
    author: str = ""

    def render(self, template: str = DEFAULT_TEMPLATE) -> str:
        try:
            return template.format(text=self.text, author=self.author).strip()
        except (KeyError, IndexError, ValueError) as exc:
            logger.warning("Bad prompt template %r (%s), using raw text", template, exc)
            return self.text

    def to_dict(self) -> dict:
        return asdict(self)


DEFAULT_ENTRY = QuoteEntry(text=DEFAULT_PROMPT, author=DEFAULT_AUTHOR)


def load_quotes(path: Union[str, Path]) -> List[QuoteEntry]:
    """Read a quote CSV. Falls back to the built-in entry on any failure."""
    path = Path(path)
    entries: List[QuoteEntry] = []
    try:
        with open(path, "r", encoding="utf-8-sig", newline="") as fh:
            reader = csv.reader(fh, delimiter=",", quotechar='"', skipinitialspace=True)
            next(reader, None)  # header
            for row in reader:
                if not row or not row[0].strip():
                    continue
                author = row[1].strip() if len(row) > 1 else ""
                entries.append(QuoteEntry(text=row[0].strip(), author=author))
    except (OSError, UnicodeDecodeError, csv.Error) as exc:
        logger.error("Failed to load quotes from %s: %s", path, exc)
        return [DEFAULT_ENTRY]

    if not entries:
        logger.warning("No quotes found in %s, using default", path)
        return [DEFAULT_ENTRY]
    logger.info("Loaded %d quotes from %s", len(entries), path)
    return entries


def _looks_like_file(value: str) -> bool:
    if value.lower().endswith(".csv"):
        return True
    # Long prompt text is not a usable path (ENAMETOOLONG, embedded NUL).
    try:
        return Path(value).is_file()
    except (OSError, ValueError):
        return False


class PromptRotation:
    """Round-robin over a fixed prompt list."""

    def __init__(self, prompts: Optional[Sequence[str]] = None, default: str = DEFAULT_PROMPT):
        cleaned = [p.strip() for p in (prompts or []) if p and p.strip()]
        self.prompts: List[str] = cleaned or [default]
        self.is_default = not cleaned

    def prompt_for(self, index: int) -> str:
        return self.prompts[index % len(self.prompts)]

    def position(self, index: int) -> int:
        return index % len(self.prompts)

    def __len__(self) -> int:
        return len(self.prompts)

    @classmethod
    def from_source(
        cls,
        source: PromptSourceSpec,
        template: str = DEFAULT_TEMPLATE,
        default: str = DEFAULT_PROMPT,
    ) -> "PromptRotation":
        if source is None or source == "":
            return cls(None, default=default)
        if isinstance(source, Path) or (isinstance(source, str) and _looks_like_file(source)):
            return cls([q.render(template) for q in load_quotes(source)], default=default)
        if isinstance(source, str):
            return cls([source], default=default)
        return cls(list(source), default=default)


def describe_source(source: PromptSourceSpec) -> str:
    """Short label for status output and session summaries."""
    if source is None or source == "":
        return "default"
    if isinstance(source, Path):
        return str(source)
    if isinstance(source, str):
        return source if _looks_like_file(source) else "prompt"
    return f"list[{len(source)}]"
