# main.py
import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv
from rich.table import Table

from audit.ledger import InMemoryLedger, JsonlLedger
from configs.config_manager import ConfigManager
from contracts.decision import DecisionPacket
from orchestration.decision_orchestrator import DecisionOrchestrator
from orchestration.periodic import PeriodicTask
from utils.errors import ConfigurationInvalid, ValidationError
from utils.logging_config import console, setup_logging

logger = logging.getLogger("EngineDriver")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Gated decision engine with paper options execution")
    parser.add_argument("--config", type=str, default=None, help="engine config YAML (default: $ENGINE_CONFIG_PATH or configs/golden_config.yaml)")
    parser.add_argument("--log-dir", type=str, default="runtime/logs")
    parser.add_argument("--fragments", type=str, default=None, help="JSONL file of normalized context fragments")
    parser.add_argument("--ledger", type=str, default=None, help="JSONL ledger file (in-memory if omitted)")
    parser.add_argument("--exit-interval", type=float, default=None, help="seconds between exit sweeps (default from config)")
    parser.add_argument("--once", action="store_true", help="run a single exit sweep and stop")
    return parser


async def feed_fragments(orchestrator: DecisionOrchestrator, path: str) -> List[str]:
    """Merge every fragment in the file; returns touched symbols in first-seen order."""
    touched: List[str] = []
    rejected = 0
    with open(path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                raw = json.loads(line)
                state = await orchestrator.update_context(raw)
            except json.JSONDecodeError as e:
                rejected += 1
                logger.warning(f"{path}:{line_no}: not JSON: {e}")
                continue
            except ValidationError as e:
                rejected += 1
                logger.warning(f"{path}:{line_no}: {e} {e.errors}")
                continue
            if state.symbol not in touched:
                touched.append(state.symbol)

    logger.info(f"Fed {orchestrator.stats['fragments']} fragments for {len(touched)} symbols, {rejected} rejected")
    return touched


def render_decisions(results) -> Table:
    table = Table(title="Decisions")
    table.add_column("Symbol")
    table.add_column("Result")
    table.add_column("Direction")
    table.add_column("Confidence", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Reason")
    for result in results:
        if isinstance(result, DecisionPacket):
            table.add_row(
                result.symbol,
                result.action.value,
                result.direction.value,
                f"{result.confidence_score:.1f}",
                f"{result.size_multiplier:.2f}",
                result.reasons[0] if result.reasons else "",
            )
        else:
            table.add_row(result.symbol, "NOT_READY", "", "", "", result.reason)
    return table


async def run(args, config) -> int:
    ledger = JsonlLedger(args.ledger) if args.ledger else InMemoryLedger()
    orchestrator = DecisionOrchestrator.from_config(config, ledger=ledger)

    try:
        if args.fragments:
            symbols = await feed_fragments(orchestrator, args.fragments)
            results = []
            for symbol in symbols:
                results.append(await orchestrator.try_build_decision(symbol))
            if results:
                console.print(render_decisions(results))

        interval = args.exit_interval or config.exits.sweep_interval_seconds
        sweeper = PeriodicTask("exit-sweep", interval, orchestrator.evaluate_open_positions)

        if args.once:
            cycle = await sweeper.run_once()
            if cycle is not None:
                logger.info(f"Exit sweep: {len(cycle.exits)} closed, {cycle.evaluated} evaluated")
            return 0

        sweeper.start()
        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            await sweeper.stop()
    finally:
        await orchestrator.close()
        logger.info(f"Ledger: {ledger.get_stats()}")


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    setup_logging(log_dir=args.log_dir, console_interval=0)

    try:
        config = ConfigManager(args.config).load()
    except ConfigurationInvalid as e:
        logger.error(f"{e}")
        for problem in e.problems:
            console.print(f"[red]config[/red] {problem}")
        return 2

    try:
        return asyncio.run(run(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return 0


if __name__ == "__main__":
    sys.exit(main())
