#!/usr/bin/env python3
"""Consensus Oracle.

Replays a JSON-lines file of oracle tasks through the attestation consensus
engine and prints one JSON result per task. Each line is a task envelope with
an additional ``task_id`` and an optional ``now`` that advances the replay
clock before the task runs.

See ``--help`` for configuration; every option can also be set through the
environment.
"""

import argparse
import json
import logging
import os
import sys

from .src.AttestationStore import DEFAULT_RECENCY_WINDOW
from .src.clock import ManualClock
from .src.ConsensusCalculator import DEFAULT_STAKE_REFERENCE, ConsensusCalculator
from .src.errors import OracleError
from .src.FeedConfig import FeedConfig
from .src.OracleEngine import OracleEngine
from .src.SettlementEngine import SettlementPolicy
from .src.TaskPerformer import TaskError, TaskPerformer, TaskRequest

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)


def parse_operators(operator_str: str | None) -> dict[str, int]:
    """Parse comma-separated operator stakes into a dictionary.

    Format: operator1=stake1,operator2=stake2

    :param operator_str: Comma-separated operator string.
    :returns: Dict mapping operator ids to initial stake.
    :raises ValueError: If a stake is not an integer.
    """
    if not operator_str:
        return {}

    operators = {}
    for item in operator_str.split(","):
        item = item.strip()
        if "=" in item:
            operator, stake = item.split("=", 1)
            operators[operator.strip()] = int(stake.strip())
    return operators


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name) or str(default))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Consensus Oracle: stake-backed price attestation consensus",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Replay tasks for one feed with three operators
  python -m consensus_oracle.main tasks.jsonl --feeds eth/usd \\
      --operators 0xA...=100000000000000000000,0xB...=70000000000000000000

Environment variables (CLI args take precedence):
  FEEDS, OPERATORS, CONFIGURER, START_TIME, MAX_DEVIATION_BPS,
  OUTLIER_DEVIATION_BPS, MIN_STAKE, CONSENSUS_THRESHOLD_BPS, MAX_STALENESS,
  RECENCY_WINDOW, STAKE_REFERENCE, SLASH_BPS, REWARD_AMOUNT
""",
    )

    parser.add_argument(
        "tasks",
        nargs="?",
        help="JSON-lines task file (default: stdin)",
    )
    parser.add_argument(
        "--feeds",
        type=str,
        help="Comma-separated feed ids to activate (e.g., eth/usd,btc/usd)",
        default=os.environ.get("FEEDS") or "eth/usd",
    )
    parser.add_argument(
        "--operators",
        type=str,
        help="Comma-separated operator stakes (e.g., 0xabc=100,0xdef=70)",
        default=os.environ.get("OPERATORS"),
    )
    parser.add_argument(
        "--configurer",
        type=str,
        help="Identity allowed to configure feeds and slash (default: admin)",
        default=os.environ.get("CONFIGURER") or "admin",
    )
    parser.add_argument(
        "--start-time",
        dest="start_time",
        type=int,
        help="Initial replay clock value (default: 0)",
        default=_env_int("START_TIME", 0),
    )
    parser.add_argument(
        "--max-deviation",
        dest="max_deviation",
        type=int,
        help="Accuracy threshold in bps for settlement and the gate (default: 500)",
        default=_env_int("MAX_DEVIATION_BPS", 500),
    )
    parser.add_argument(
        "--outlier-deviation",
        dest="outlier_deviation",
        type=int,
        help="Outlier filter threshold in bps (default: 1000)",
        default=_env_int("OUTLIER_DEVIATION_BPS", 1000),
    )
    parser.add_argument(
        "--min-stake",
        dest="min_stake",
        type=int,
        help="Minimum operator balance and consensus stake (default: 0)",
        default=_env_int("MIN_STAKE", 0),
    )
    parser.add_argument(
        "--threshold",
        type=int,
        help="Consensus confidence threshold in bps (default: 6600)",
        default=_env_int("CONSENSUS_THRESHOLD_BPS", 6600),
    )
    parser.add_argument(
        "--max-staleness",
        dest="max_staleness",
        type=int,
        help="Max consensus age in time units (default: 300)",
        default=_env_int("MAX_STALENESS", 300),
    )
    parser.add_argument(
        "--recency-window",
        dest="recency_window",
        type=int,
        help=f"Attestation recency window (default: {DEFAULT_RECENCY_WINDOW})",
        default=_env_int("RECENCY_WINDOW", DEFAULT_RECENCY_WINDOW),
    )
    parser.add_argument(
        "--stake-reference",
        dest="stake_reference",
        type=int,
        help="Stake at which the confidence stake factor reaches 1/2 (default: 1e18)",
        default=_env_int("STAKE_REFERENCE", DEFAULT_STAKE_REFERENCE),
    )
    parser.add_argument(
        "--slash-bps",
        dest="slash_bps",
        type=int,
        help="Share of an inaccurate attestation's stake slashed, bps (default: 100)",
        default=_env_int("SLASH_BPS", 100),
    )
    parser.add_argument(
        "--reward",
        type=int,
        help="Reward per accurate attestation (default: 1e16)",
        default=_env_int("REWARD_AMOUNT", 10 ** 16),
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    return parser


def main() -> None:
    """Main entry point for the Consensus Oracle CLI."""
    parser = build_parser()
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.recency_window < 1:
        parser.error("--recency-window must be at least 1")
    if args.stake_reference < 0:
        parser.error("--stake-reference must not be negative")

    feeds = [f.strip() for f in args.feeds.split(",") if f.strip()]
    if not feeds:
        parser.error("At least one feed must be specified")

    try:
        operators = parse_operators(args.operators)
        config = FeedConfig(
            max_price_deviation_bps=args.max_deviation,
            outlier_deviation_bps=args.outlier_deviation,
            min_stake_required=args.min_stake,
            consensus_threshold_bps=args.threshold,
            max_staleness=args.max_staleness,
        )
        policy = SettlementPolicy(reward_amount=args.reward, slash_bps=args.slash_bps)
    except ValueError as e:
        parser.error(str(e))

    # Log configuration
    logger.info("=" * 60)
    logger.info("Consensus Oracle - Task Replay")
    logger.info("=" * 60)
    logger.info(f"Feeds:             {', '.join(feeds)}")
    logger.info(f"Operators:         {len(operators)}")
    logger.info(f"Max Deviation:     {config.max_price_deviation_bps} bps")
    logger.info(f"Outlier Deviation: {config.outlier_deviation_bps} bps")
    logger.info(f"Threshold:         {config.consensus_threshold_bps} bps")
    logger.info(f"Max Staleness:     {config.max_staleness}")
    logger.info(f"Recency Window:    {args.recency_window}")
    logger.info("=" * 60)

    clock = ManualClock(args.start_time)
    engine = OracleEngine(
        clock,
        configurers=[args.configurer],
        calculator=ConsensusCalculator(stake_reference=args.stake_reference),
        settlement_policy=policy,
        recency_window=args.recency_window,
    )
    performer = TaskPerformer(engine, authority=args.configurer)

    try:
        for feed_id in feeds:
            engine.activate_feed(args.configurer, feed_id, config)
        for operator_id, stake in operators.items():
            engine.register(operator_id, stake)
    except OracleError as e:
        logger.error(f"Setup failed: {e}")
        sys.exit(1)

    stream = open(args.tasks) if args.tasks else sys.stdin
    failures = 0
    try:
        for line_no, line in enumerate(stream, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                task = json.loads(line)
                if task.get("now") is not None:
                    clock.set(int(task["now"]))
                request = TaskRequest(
                    task_id=str(task.get("task_id") or line_no),
                    payload=json.dumps(
                        {"type": task.get("type"), "parameters": task.get("parameters")}
                    ).encode("utf-8"),
                )
                response = performer.handle_task(request)
                print(json.dumps({"task_id": response.task_id, "result": json.loads(response.result)}))
            except (TaskError, ValueError, TypeError, AttributeError) as e:
                failures += 1
                logger.error(f"Task on line {line_no} failed: {e}")
                print(json.dumps({"task_id": str(line_no), "error": str(e)}))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        if stream is not sys.stdin:
            stream.close()

    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()
