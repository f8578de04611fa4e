import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from ttlcap.cluster import ClusterStore
from ttlcap.config import RunConfig
from ttlcap.errors import RunInterrupted, TTLCapError
from ttlcap.harness import CacheCeilingHarness, HarnessReport

logger = logging.getLogger(__name__)

DEFAULT_NUMBER_OF_THREADS = 2 * 16
DEFAULT_NUMBER_OF_OPERATIONS_PER_THREAD = 10


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ttlcap",
        description="Exercise a size ceiling on a TTL-evicting cache set",
    )
    parser.add_argument("-z", "--threads", type=int, default=DEFAULT_NUMBER_OF_THREADS,
                        help="Number of workers generating keep-alive load")
    parser.add_argument("-c", "--operations", type=int, default=DEFAULT_NUMBER_OF_OPERATIONS_PER_THREAD,
                        help="Number of operations to carry out per worker")
    parser.add_argument("--ttl", type=int, default=10, help="Cache TTL in seconds")
    parser.add_argument("--goal", type=int, default=800, help="Goal maximum number of objects")
    parser.add_argument("--nodes", type=int, default=3, help="Number of store nodes")
    parser.add_argument("--seed", type=int, default=None, help="Seed for reproducible runs")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    return parser


def config_from_args(args: argparse.Namespace) -> RunConfig:
    return RunConfig(
        threads=args.threads,
        operations_per_thread=args.operations,
        ttl=args.ttl,
        goal_max_objects=args.goal,
        node_count=args.nodes,
        seed=args.seed,
    )


def render_report(console: Console, report: HarnessReport) -> None:
    checks = Table(title="Verification")
    checks.add_column("Check")
    checks.add_column("Result")
    checks.add_column("Failures", justify="right")
    for check in report.checks:
        status = "[green]Successful[/]" if check.passed else "[red]Failed[/]"
        checks.add_row(check.name, status, str(len(check.failures)))
    console.print(checks)

    stats = Table(title="Run statistics")
    stats.add_column("Component")
    stats.add_column("Metric")
    stats.add_column("Value", justify="right")
    for component, metrics in (
        ("controller", report.controller),
        ("generator", report.generator),
        ("workers", report.pool),
    ):
        for name, value in metrics.items():
            shown = f"{value:.2f}" if isinstance(value, float) else str(value)
            stats.add_row(component, name, shown)
    console.print(stats)


async def run(config: RunConfig, console: Console) -> HarnessReport:
    cluster = ClusterStore(
        node_count=config.node_count,
        namespaces=(config.namespace,),
        bucket_count=config.histogram_buckets,
        sweep_period=config.sweep_period,
    )
    harness = CacheCeilingHarness(cluster, config)
    loop = asyncio.get_running_loop()
    interrupted = asyncio.Event()

    async with cluster:
        task = asyncio.create_task(harness.run(), name="harness")

        def interrupt() -> None:
            logger.warning("Interrupted, stopping the run")
            interrupted.set()
            harness.stop()
            task.cancel()

        signals = (signal.SIGTERM, signal.SIGINT)
        for sig in signals:
            loop.add_signal_handler(sig, interrupt)
        try:
            report = await task
        except asyncio.CancelledError:
            if not interrupted.is_set():
                raise
            raise RunInterrupted("Run interrupted before the checks completed") from None
        finally:
            for sig in signals:
                loop.remove_signal_handler(sig)
    render_report(console, report)
    return report


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    console = Console()
    console.print("[bold blue]ttlcap[/] - cache size ceiling harness")

    try:
        report = asyncio.run(run(config_from_args(args), console))
    except RunInterrupted as e:
        console.print(f"[yellow]{e}[/]")
        return 130
    except TTLCapError as e:
        console.print(f"[red]Run aborted:[/] {e}")
        return 1

    console.print("\n[green]Run complete![/]" if report.passed else "\n[red]Run finished with failures[/]")
    return 0 if report.passed else 1


if __name__ == "__main__":
    sys.exit(main())
