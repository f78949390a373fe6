"""
FX Harvest CLI — control surface for the harvest loop.

Usage:
    fxharvest run --count 20 --prompts quotes.csv
    fxharvest run --prompt "A lighthouse in fog" --headless
    fxharvest probe
    fxharvest prompts --file quotes.csv
    fxharvest history --limit 5
    fxharvest config

    python -m fxharvest.cli run --count 3 -v
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Optional

from fxharvest import __version__
from fxharvest.automation_controller import AutomationController, load_history
from fxharvest.config import HarvestConfig
from fxharvest.image_fetcher import ImageFetcher
from fxharvest.image_store import ImageStore
from fxharvest.playwright_page import PlaywrightPage
from fxharvest.progress import LoggingListener
from fxharvest.prompt_source import PromptRotation

logger = logging.getLogger("fxharvest.cli")


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str, ensure_ascii=False))


def _config_from_args(args: argparse.Namespace) -> HarvestConfig:
    config = HarvestConfig.load(Path(args.config) if args.config else None)
    return config.override(
        target_url=getattr(args, "url", None),
        output_dir=getattr(args, "output", None),
        data_dir=getattr(args, "data_dir", None),
        headless=True if getattr(args, "headless", False) else None,
        cdp_url=getattr(args, "cdp_url", None),
        generation_wait=getattr(args, "generation_wait", None),
        max_step_errors=getattr(args, "max_errors", None),
    )


def _prompt_source(args: argparse.Namespace) -> Optional[str]:
    return args.prompts or args.prompt or None


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

async def _run_session(config: HarvestConfig, count: int, source: Optional[str]) -> dict:
    async with PlaywrightPage(config.target_url, headless=config.headless,
                              cdp_url=config.cdp_url) as page:
        async with ImageFetcher(timeout=config.fetch_timeout) as fetcher:
            controller = AutomationController(
                page,
                fetcher=fetcher,
                store=ImageStore(config.output_dir),
                listeners=[LoggingListener()],
                timings=config.timings(),
                data_dir=config.data_dir,
                prompt_template=config.prompt_template,
                default_prompt=config.default_prompt,
                max_step_errors=config.max_step_errors,
            )
            loop = asyncio.get_running_loop()
            try:
                loop.add_signal_handler(signal.SIGINT, controller.stop)
            except (NotImplementedError, RuntimeError):
                logger.debug("Signal handlers unavailable; Ctrl-C will abort immediately")
            try:
                session = await controller.run(count=count, prompt_source=source)
            finally:
                try:
                    loop.remove_signal_handler(signal.SIGINT)
                except (NotImplementedError, RuntimeError):
                    pass
            return session.to_dict() if session else controller.status()


def _cli_run(args: argparse.Namespace) -> None:
    config = _config_from_args(args)
    count = args.count if args.count is not None else config.default_count
    if count < 1:
        print("--count must be a positive integer", file=sys.stderr)
        sys.exit(2)
    summary = asyncio.run(_run_session(config, count, _prompt_source(args)))
    _print_json(summary)


async def _probe_page(config: HarvestConfig) -> dict:
    async with PlaywrightPage(config.target_url, headless=config.headless,
                              cdp_url=config.cdp_url) as page:
        return await page.snapshot()


def _cli_probe(args: argparse.Namespace) -> None:
    config = _config_from_args(args)
    _print_json(asyncio.run(_probe_page(config)))


def _cli_prompts(args: argparse.Namespace) -> None:
    config = _config_from_args(args)
    rotation = PromptRotation.from_source(
        args.file or None, template=config.prompt_template, default=config.default_prompt,
    )
    _print_json({"default": rotation.is_default, "prompts": rotation.prompts})


def _cli_history(args: argparse.Namespace) -> None:
    config = _config_from_args(args)
    _print_json(load_history(config.data_dir, args.limit))


def _cli_config(args: argparse.Namespace) -> None:
    _print_json(_config_from_args(args).to_dict())


# ---------------------------------------------------------------------------
# CLI main
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fxharvest",
        description="FX Harvest — automated image generation and collection",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", default=None, help="JSON config file")

    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Run a harvest session")
    run.add_argument("--count", type=int, default=None)
    source = run.add_mutually_exclusive_group()
    source.add_argument("--prompts", default=None, help="Quote CSV file (text, author)")
    source.add_argument("--prompt", default=None, help="Single prompt text")
    run.add_argument("--url", default=None)
    run.add_argument("--cdp-url", default=None, help="Attach to a running browser")
    run.add_argument("--headless", action="store_true")
    run.add_argument("--output", default=None, help="Image output directory")
    run.add_argument("--data-dir", default=None)
    run.add_argument("--generation-wait", type=float, default=None)
    run.add_argument("--max-errors", type=int, default=None)
    run.set_defaults(func=_cli_run)

    probe = sub.add_parser("probe", help="Open the page and report what the probes see")
    probe.add_argument("--url", default=None)
    probe.add_argument("--cdp-url", default=None)
    probe.add_argument("--headless", action="store_true")
    probe.set_defaults(func=_cli_probe)

    prompts = sub.add_parser("prompts", help="Show the prompts a source yields")
    prompts.add_argument("--file", default="")
    prompts.set_defaults(func=_cli_prompts)

    hist = sub.add_parser("history", help="Recent session summaries")
    hist.add_argument("--limit", type=int, default=20)
    hist.add_argument("--data-dir", default=None)
    hist.set_defaults(func=_cli_history)

    cfg = sub.add_parser("config", help="Show effective configuration")
    cfg.set_defaults(func=_cli_config)

    return parser


def main(argv: Optional[list] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if not args.command or not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
