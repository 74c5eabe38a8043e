"""
Tests for the reconciliation worker loop body.
"""
from unittest.mock import AsyncMock

import pytest

from gateway_reconciliation.workers.reconciliation_worker import run_sweep


class TestRunSweep:
    @pytest.mark.asyncio
    async def test_runs_both_passes(self) -> None:
        sweeper = AsyncMock()
        sweeper.run_once.return_value = {"follow_up_pending": {}, "resynchronize": {}}

        await run_sweep(sweeper)

        sweeper.run_once.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_worker(self) -> None:
        sweeper = AsyncMock()
        sweeper.run_once.side_effect = RuntimeError("database unavailable")

        await run_sweep(sweeper)
