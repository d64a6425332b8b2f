"""
Command-line entry point.

Runs one pipeline over a file or stream URL until the source ends or the
process receives SIGINT/SIGTERM, optionally serving the status API while
it runs.

Exit codes:
    0  source drained (or graceful shutdown)
    1  configuration error
    2  fatal pipeline error
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from dataclasses import replace
from typing import Sequence

import uvicorn
from dotenv import load_dotenv

from bootstrap import TRANSLATOR_PROVIDERS, TTS_PROVIDERS, build_pipeline
from config import AppConfig, ConfigError, LatencyBudget, require_target_lang
from observability.logger import log_event
from observability.metrics import timed
from orchestrator.enums.mode import OverBudgetPolicy
from orchestrator.errors import PipelineFatalError
from orchestrator.runtime import Pipeline
from server.app import create_app


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="live-dub",
        description="Live dubbing pipeline: recognize, translate and re-voice an audio stream.",
    )
    parser.add_argument("input", help="audio file path, or a URL handed to ffmpeg")
    parser.add_argument("-o", "--output", help="write played audio to this WAV file")
    parser.add_argument("--target-lang", help="target language tag (default: TARGET_LANG or pt-BR)")
    parser.add_argument("--latency-ms", type=int, help="end-to-end latency budget")
    parser.add_argument(
        "--over-budget",
        choices=[p.value for p in OverBudgetPolicy],
        help="what to do with items that exceed the budget before synthesis",
    )
    parser.add_argument("--translator", choices=TRANSLATOR_PROVIDERS)
    parser.add_argument("--tts", choices=TTS_PROVIDERS)
    parser.add_argument(
        "--realtime",
        action="store_true",
        help="pace file input at capture speed",
    )
    parser.add_argument("--status-port", type=int, help="serve /health, /ready, /metrics")
    parser.add_argument("--status-host", default="127.0.0.1")
    return parser


def resolve_config(args: argparse.Namespace, base: AppConfig) -> AppConfig:
    """CLI flags override environment values."""
    overrides: dict[str, object] = {}
    if args.target_lang is not None:
        overrides["target_lang"] = require_target_lang(args.target_lang)
    if args.latency_ms is not None:
        overrides["latency"] = LatencyBudget(args.latency_ms)
    if args.over_budget is not None:
        overrides["over_budget_policy"] = OverBudgetPolicy(args.over_budget)
    if args.translator is not None:
        overrides["translator_provider"] = args.translator
    if args.tts is not None:
        overrides["tts_provider"] = args.tts
    return replace(base, **overrides)


async def run_pipeline(
    pipeline: Pipeline,
    *,
    status_host: str,
    status_port: int | None,
) -> int:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, pipeline.request_shutdown, sig.name)

    server: uvicorn.Server | None = None
    server_task: asyncio.Task[None] | None = None
    if status_port is not None:
        server = uvicorn.Server(uvicorn.Config(
            create_app(pipeline),
            host=status_host,
            port=status_port,
            log_level="warning",
        ))
        server_task = asyncio.create_task(server.serve())

    try:
        with timed("pipeline_run"):
            await pipeline.run()
        return 0
    except PipelineFatalError:
        return 2
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        if server is not None and server_task is not None:
            server.should_exit = True
            await server_task


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        config = resolve_config(args, AppConfig.load_from_env())
        pipeline = build_pipeline(
            config,
            input_ref=args.input,
            output_path=args.output,
            realtime=args.realtime,
        )
    except ConfigError as exc:
        log_event({"event_type": "CONFIG_ERROR", "message": str(exc)})
        return 1

    return asyncio.run(run_pipeline(
        pipeline,
        status_host=args.status_host,
        status_port=args.status_port,
    ))


if __name__ == "__main__":
    sys.exit(main())
