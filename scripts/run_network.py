#!/usr/bin/env python3
"""
Ben-Or Network Runner
Launches N nodes (F of them crash-faulty), starts consensus, waits for the
non-faulty nodes to decide and prints the final state of every node.

Exit code 0 when every non-faulty node decided the same value, 1 otherwise.

Examples:
    python scripts/run_network.py -n 3 -f 0 --values 0 0 0
    python scripts/run_network.py -n 10 -f 3 --values 1 --faulty 3 7 9
    python scripts/run_network.py -n 4 -f 1 --transport http --base-port 4000
"""

import argparse
import asyncio
import logging
import random
import signal
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from benor.config import configure_logging, get_settings
from benor.consensus import ConsensusConfig, NodeState, Value
from benor.network import NetworkConfig, NetworkConfigError, NetworkSupervisor

logger = logging.getLogger("benor.runner")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Run a Ben-Or consensus network")
    parser.add_argument("-n", "--nodes", type=int, required=True, help="Total number of nodes (N)")
    parser.add_argument("-f", "--faults", type=int, default=0, help="Number of crash-faulty nodes (F)")
    parser.add_argument(
        "--values", type=int, nargs="+", choices=(0, 1),
        help="Initial values: one per node, or a single value for all (default: random)",
    )
    parser.add_argument(
        "--faulty", type=int, nargs="*",
        help="Indices of faulty nodes (default: the first F)",
    )
    parser.add_argument("--transport", choices=("local", "http"), default=settings.TRANSPORT)
    parser.add_argument("--base-port", type=int, default=settings.BASE_NODE_PORT)
    parser.add_argument("--timeout", type=float, default=10.0, help="Seconds to wait for decisions")
    parser.add_argument("--poll-interval", type=float, default=settings.POLL_INTERVAL)
    parser.add_argument("--max-poll-attempts", type=int, default=settings.MAX_POLL_ATTEMPTS)
    parser.add_argument("--seed", type=int, default=None, help="Seed for coin flips and random values")
    return parser.parse_args(argv)


def build_launch_lists(args: argparse.Namespace):
    rng = random.Random(args.seed)
    if args.values is None:
        values = [rng.choice((0, 1)) for _ in range(args.nodes)]
    elif len(args.values) == 1:
        values = args.values * args.nodes
    else:
        values = list(args.values)

    faulty_ids = set(args.faulty if args.faulty is not None else range(args.faults))
    faulty = [node_id in faulty_ids for node_id in range(args.nodes)]
    values = [None if is_faulty else value for value, is_faulty in zip(values, faulty)]
    return values, faulty


def format_state(state: NodeState) -> str:
    if state.faulty:
        return f"  node {state.node_id:>3}  faulty"
    decided = f"decided {state.decided_value.to_wire()}" if state.decided else "undecided"
    return (
        f"  node {state.node_id:>3}  k={state.round:<5} x={state.estimate.to_wire()}  "
        f"{decided:<10} {state.lifecycle.value}"
    )


def summarize(states: List[NodeState]) -> bool:
    correct = [state for state in states if not state.faulty]
    decided = {state.decided_value for state in correct if state.decided}

    print("\nFinal node states:")
    for state in states:
        print(format_state(state))

    if len(decided) > 1:
        print("\nAGREEMENT VIOLATED: " + ", ".join(str(v.to_wire()) for v in decided))
        return False
    if correct and all(state.decided for state in correct):
        value: Value = decided.pop()
        print(f"\nAll {len(correct)} non-faulty nodes decided {value.to_wire()}")
        return True
    undecided = sum(1 for state in correct if not state.decided)
    print(f"\n{undecided}/{len(correct)} non-faulty nodes undecided")
    return False


async def run(args: argparse.Namespace) -> int:
    values, faulty = build_launch_lists(args)
    network_config = NetworkConfig(args.nodes, args.faults)
    consensus_config = ConsensusConfig(
        total_nodes=args.nodes,
        max_faults=args.faults,
        poll_interval=args.poll_interval,
        max_poll_attempts=args.max_poll_attempts,
        seed=args.seed,
    )
    if not network_config.tolerates_faults:
        logger.warning(
            f"F={args.faults} is not below N/3 for N={args.nodes}: termination is not guaranteed"
        )

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except NotImplementedError:
            pass  # Windows event loops have no signal handlers

    async with NetworkSupervisor(
        network_config,
        consensus_config=consensus_config,
        transport=args.transport,
        base_port=args.base_port,
    ) as network:
        await network.launch(values, faulty)
        await network.start_all()

        waiter = asyncio.create_task(network.wait_for_decisions(timeout=args.timeout))
        interrupted = asyncio.create_task(shutdown.wait())
        await asyncio.wait({waiter, interrupted}, return_when=asyncio.FIRST_COMPLETED)
        interrupted.cancel()
        if not waiter.done():
            logger.info("Received shutdown signal, stopping network...")
            waiter.cancel()

        await network.stop_all()
        ok = summarize(network.snapshots())

    return 0 if ok else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging()
    try:
        return asyncio.run(run(args))
    except NetworkConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
