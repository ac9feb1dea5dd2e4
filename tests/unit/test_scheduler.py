#!/usr/bin/env python3
"""
Unit tests for the single-flight payment scheduler.
"""

import asyncio
from datetime import datetime
from zoneinfo import ZoneInfo

from teambot.core.errors import FetchError
from teambot.services.reconcile import CycleReport
from teambot.services.scheduler import PaymentScheduler, seconds_until


class BlockingReconciler:
    """Reconciler whose runs wait until the test opens the gate."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.checks = 0
        self.sweeps = 0

    async def check_new_payments(self):
        self.checks += 1
        await self.gate.wait()
        return CycleReport(new=1, applied=1)

    async def sweep(self):
        self.sweeps += 1
        return CycleReport()


class FailingReconciler:
    async def check_new_payments(self):
        raise FetchError("bank down")

    async def sweep(self):
        raise FetchError("sheet down")


class TestSecondsUntil:
    def test_later_today(self):
        now = datetime(2024, 5, 1, 4, 30, tzinfo=ZoneInfo("Europe/Prague"))
        assert seconds_until(6, now) == 90 * 60

    def test_tomorrow(self):
        now = datetime(2024, 5, 1, 6, 0, tzinfo=ZoneInfo("Europe/Prague"))
        assert seconds_until(6, now) == 24 * 3600

    def test_spring_forward_night_is_shorter(self):
        now = datetime(2024, 3, 30, 12, 0, tzinfo=ZoneInfo("Europe/Prague"))
        assert seconds_until(6, now) == 17 * 3600

    def test_fall_back_night_is_longer(self):
        now = datetime(2024, 10, 26, 12, 0, tzinfo=ZoneInfo("Europe/Prague"))
        assert seconds_until(6, now) == 19 * 3600


class TestPaymentScheduler:
    def test_overlapping_runs_are_skipped(self):
        async def scenario():
            reconciler = BlockingReconciler()
            scheduler = PaymentScheduler(reconciler, poll_interval=600, sweep_hour=6)

            first = asyncio.create_task(scheduler.run_check())
            await asyncio.sleep(0)
            assert scheduler.busy

            skipped_check = await scheduler.run_check()
            skipped_sweep = await scheduler.run_sweep()
            reconciler.gate.set()
            report = await first
            return reconciler, scheduler, skipped_check, skipped_sweep, report

        reconciler, scheduler, skipped_check, skipped_sweep, report = asyncio.run(scenario())

        assert skipped_check is None
        assert skipped_sweep is None
        assert report.applied == 1
        assert reconciler.checks == 1
        assert reconciler.sweeps == 0
        assert not scheduler.busy

    def test_aborted_cycle_returns_none(self):
        scheduler = PaymentScheduler(FailingReconciler())

        assert asyncio.run(scheduler.run_check()) is None
        assert asyncio.run(scheduler.run_sweep()) is None
        assert not scheduler.busy

    def test_start_runs_first_check_and_stop_cancels(self):
        async def scenario():
            reconciler = BlockingReconciler()
            reconciler.gate.set()
            scheduler = PaymentScheduler(reconciler, poll_interval=600, sweep_hour=6)
            scheduler.start()
            scheduler.start()
            assert len(scheduler.tasks) == 2
            for _ in range(3):
                await asyncio.sleep(0)
            await scheduler.stop()
            return reconciler, scheduler

        reconciler, scheduler = asyncio.run(scenario())

        assert reconciler.checks == 1
        assert scheduler.tasks == []
