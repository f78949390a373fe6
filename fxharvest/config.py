"""
Configuration for FX Harvest.

Values come from (lowest to highest precedence): module defaults,
``FXHARVEST_*`` environment variables, an optional JSON file, and finally
CLI flags applied with ``HarvestConfig.override``.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

from fxharvest.automation_controller import Timings
from fxharvest.prompt_source import DEFAULT_PROMPT, DEFAULT_TEMPLATE

logger = logging.getLogger("config")

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_TARGET_URL = "https://labs.google/fx/ja/tools/image-fx"
DEFAULT_OUTPUT_DIR = Path("downloads")
DEFAULT_DATA_DIR = Path("data") / "fxharvest"
DEFAULT_COUNT = 100
ENV_PREFIX = "FXHARVEST_"


def _load_json(path: Path, default: Any = None) -> Any:
    if default is None:
        default = {}
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except (FileNotFoundError, json.JSONDecodeError):
        return default


def _coerce(value: Any, current: Any) -> Any:
    """Convert a raw env/JSON value to the type of the current default."""
    if isinstance(current, bool):
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    if isinstance(current, Path):
        return Path(value)
    return value


@dataclass
class HarvestConfig:
    target_url: str = DEFAULT_TARGET_URL
    output_dir: Path = DEFAULT_OUTPUT_DIR
    data_dir: Path = DEFAULT_DATA_DIR
    default_count: int = DEFAULT_COUNT
    default_prompt: str = DEFAULT_PROMPT
    prompt_template: str = DEFAULT_TEMPLATE
    settle_delay: float = 1.0
    generation_wait: float = 25.0
    retry_backoff: float = 3.0
    iteration_delay: float = 2.0
    error_backoff: float = 5.0
    fetch_timeout: float = 30.0
    headless: bool = False
    cdp_url: str = ""
    max_step_errors: int = 0

    def override(self, **values: Any) -> "HarvestConfig":
        """Apply non-None values in place; unknown keys raise KeyError."""
        known = {f.name for f in fields(self)}
        for key, value in values.items():
            if value is None:
                continue
            if key not in known:
                raise KeyError(f"Unknown config key: {key}")
            setattr(self, key, _coerce(value, getattr(self, key)))
        return self

    def timings(self) -> Timings:
        return Timings(
            settle_delay=self.settle_delay,
            generation_wait=self.generation_wait,
            retry_backoff=self.retry_backoff,
            iteration_delay=self.iteration_delay,
            error_backoff=self.error_backoff,
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["output_dir"] = str(self.output_dir)
        d["data_dir"] = str(self.data_dir)
        return d

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "HarvestConfig":
        environ = os.environ if environ is None else environ
        config = cls()
        values = {}
        for f in fields(config):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is not None and raw != "":
                values[f.name] = raw
        try:
            config.override(**values)
        except ValueError as exc:
            logger.error("Invalid environment configuration: %s", exc)
            raise
        return config

    @classmethod
    def load(cls, path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> "HarvestConfig":
        """Environment config, then the JSON file at *path* on top."""
        config = cls.from_env(environ)
        if path is not None:
            data = _load_json(Path(path))
            if not isinstance(data, dict):
                logger.warning("Config file %s is not a JSON object, ignoring", path)
                return config
            known = {f.name for f in fields(config)}
            unknown = sorted(set(data) - known)
            if unknown:
                logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
            config.override(**{k: v for k, v in data.items() if k in known})
        return config
