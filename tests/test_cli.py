import asyncio
import io
import os
import signal
import unittest
from unittest.mock import AsyncMock, patch

from rich.console import Console

from ttlcap.cli import build_parser, config_from_args, main, render_report, run
from ttlcap.config import RunConfig
from ttlcap.errors import RunInterrupted
from ttlcap.harness import HarnessReport
from ttlcap.tracking import CheckResult


class TestCli(unittest.TestCase):
    def test_defaults(self):
        """Test the default thread and operation counts."""
        config = config_from_args(build_parser().parse_args([]))
        self.assertEqual(config.threads, 32)
        self.assertEqual(config.operations_per_thread, 10)
        self.assertEqual(config.namespace, 'lru_test')
        self.assertEqual(config.set_name, 'mycache')

    def test_overrides(self):
        args = build_parser().parse_args(['-z', '4', '--operations', '3', '--seed', '11', '--ttl', '5'])
        config = config_from_args(args)
        self.assertEqual(config.threads, 4)
        self.assertEqual(config.operations_per_thread, 3)
        self.assertEqual(config.seed, 11)
        self.assertEqual(config.drain_window, 7.0)

    def test_render_report(self):
        """Test that checks and statistics are rendered."""
        failed = CheckResult('expected records have been kept alive')
        failed.failures.append('Record should not be in cache: x')
        report = HarnessReport(
            checks=[CheckResult('cache is now entirely empty'), failed],
            controller={'ticks': 3, 'removed': 12},
            pool={'memory_usage_mb': 42.5},
        )
        output = io.StringIO()
        render_report(Console(file=output, width=120), report)

        text = output.getvalue()
        self.assertIn('cache is now entirely empty', text)
        self.assertIn('Failed', text)
        self.assertIn('42.50', text)
        self.assertFalse(report.passed)

    def test_interrupted_exit_code(self):
        """Test that an interrupted run exits with 130."""
        with patch('ttlcap.cli.run', new=AsyncMock(side_effect=RunInterrupted('stopped'))):
            self.assertEqual(main([]), 130)


class TestInterrupt(unittest.IsolatedAsyncioTestCase):
    async def test_sigterm_cancels_run(self):
        """Test that SIGTERM ends the run without waiting for workers or the drain window."""
        config = RunConfig(
            ttl=30, initial_size=20, growth_max_batch=2, threads=2,
            operations_per_thread=100, worker_join_timeout=60, seed=5,
        )
        loop = asyncio.get_running_loop()
        loop.call_later(0.3, os.kill, os.getpid(), signal.SIGTERM)

        with self.assertRaises(RunInterrupted):
            await asyncio.wait_for(run(config, Console(file=io.StringIO())), timeout=5)


if __name__ == '__main__':
    unittest.main()
