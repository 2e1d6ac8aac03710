"""
Tests for the run loop: requeue discipline, deadline and run aborts.
"""

import time

import pytest
from web3.exceptions import TimeExhausted

from keeper.engine.executor import JobExecutor
from keeper.engine.models import ExecutionResult, RedemptionHints, RunSummary, SkipReason, SpendTracker
from keeper.engine.run_loop import run_liquidation_pass, run_once, run_redemption_pass
from keeper.engine.state import load_last_run

from conftest import KEEPER, PRICE_E18, FakeAction, FakeChainClient, borrower

UNSAFE = 10**18


class ScriptedExecutor:
    """Records executed jobs and answers with handler(job)."""

    def __init__(self, handler):
        self.handler = handler
        self.jobs = []

    async def execute_job(self, job, spend):
        self.jobs.append(job.borrowers)
        return self.handler(job)


def _process_all(job):
    return ExecutionResult(processed_borrowers=list(job.borrowers), leftover_borrowers=[], tx_hash="0xabc")


def _unsafe_client(count):
    nodes = [borrower(i) for i in range(count)]
    return FakeChainClient(nodes=nodes, ratios={node: UNSAFE for node in nodes})


def _summary():
    return RunSummary(run_id="test", chain_id=31611, network="mezo-testnet", started_at=time.time())


@pytest.mark.asyncio
async def test_unprocessed_job_requeued_once(make_config, events):
    config = make_config(MAX_TROVES_PER_JOB=20)
    client = _unsafe_client(3)
    executor = ScriptedExecutor(
        lambda job: ExecutionResult(processed_borrowers=[], leftover_borrowers=list(job.borrowers), reason=SkipReason.SPEND_CAP)
    )
    summary = _summary()

    await run_liquidation_pass(client, config, PRICE_E18, SpendTracker(), summary, executor=executor)

    assert executor.jobs == [tuple(client.nodes), tuple(client.nodes)]
    assert summary.jobs_executed == 2
    assert summary.processed == []
    assert summary.leftover == client.nodes
    assert events.find("requeue")[0]["kind"] == "unprocessed"
    assert events.find("requeue_suppressed")[0]["reason"] == "SPEND_CAP"


@pytest.mark.asyncio
async def test_shrink_suffix_runs_before_next_job(make_config, events):
    config = make_config(MAX_TROVES_PER_JOB=3)
    client = _unsafe_client(6)
    nodes = client.nodes

    def handler(job):
        if job.borrowers == tuple(nodes[:3]):
            return ExecutionResult(processed_borrowers=list(nodes[:2]), leftover_borrowers=[nodes[2]], tx_hash="0x1")
        return _process_all(job)

    executor = ScriptedExecutor(handler)
    summary = _summary()

    await run_liquidation_pass(client, config, PRICE_E18, SpendTracker(), summary, executor=executor)

    assert executor.jobs == [tuple(nodes[:3]), (nodes[2],), tuple(nodes[3:])]
    assert summary.jobs_total == 2
    assert summary.processed == nodes
    assert summary.leftover == []
    requeue = events.find("requeue")[0]
    assert (requeue["kind"], requeue["position"]) == ("shrink_suffix", "front")


@pytest.mark.asyncio
async def test_deadline_stops_between_jobs(make_config, events):
    config = make_config(MAX_TROVES_PER_JOB=2)
    client = _unsafe_client(4)
    executor = ScriptedExecutor(_process_all)
    ticks = iter([0, 20])

    summary = _summary()
    await run_liquidation_pass(
        client, config, PRICE_E18, SpendTracker(), summary, executor=executor, deadline=10, clock=lambda: next(ticks)
    )

    assert executor.jobs == [tuple(client.nodes[:2])]
    assert summary.leftover == client.nodes[2:]
    assert events.find("run_timeout")[0]["borrowers_remaining"] == 2


@pytest.mark.asyncio
async def test_nothing_liquidatable(config):
    client = FakeChainClient()
    executor = ScriptedExecutor(_process_all)
    summary = _summary()

    await run_liquidation_pass(client, config, PRICE_E18, SpendTracker(), summary, executor=executor)

    assert executor.jobs == []
    assert summary.jobs_total == 0
    assert summary.discovery.scanned == 0


@pytest.mark.asyncio
async def test_run_aborted_on_stale_price(make_config, events):
    config = make_config(MAX_PRICE_AGE_SECONDS=60)
    client = _unsafe_client(3)
    client.round_data = (1, PRICE_E18, 0, int(time.time()) - 180, 1)

    summary = await run_once(config, client=client, save_state=False)

    assert summary.aborted_reason == "PRICE_REJECTED"
    assert client.icr_reads == []
    assert client.sent == []
    assert "price_stale" in events.names()
    assert events.find("run_summary")[0]["aborted_reason"] == "PRICE_REJECTED"


@pytest.mark.asyncio
async def test_dry_run_pass_saves_snapshot(make_config):
    config = make_config(DRY_RUN="true")
    client = _unsafe_client(3)

    summary = await run_once(config, client=client)

    assert summary.aborted_reason is None
    assert summary.processed == client.nodes
    assert summary.spent_wei == 0
    assert client.sent == []

    record = load_last_run(config.SAVE_STATE_PATH)
    assert record["run_id"] == summary.run_id
    assert record["processed"] == client.nodes
    assert record["price_e18"] == str(PRICE_E18)


@pytest.mark.asyncio
async def test_redemption_pass_disabled(config, fake_client):
    assert await run_redemption_pass(fake_client, config, PRICE_E18, SpendTracker()) is None


@pytest.mark.asyncio
async def test_redemption_pass_rejects_truncated_to_zero(make_config, events):
    config = make_config(KEEPER_MODES="liquidation,redemption", REDEEM_MUSD_AMOUNT=10**18)
    client = FakeChainClient(nodes=[borrower(0)])
    client.hints = RedemptionHints(first_hint=borrower(0), partial_nicr=0, truncated_amount=0)

    outcome = await run_redemption_pass(client, config, PRICE_E18, SpendTracker())

    assert outcome == {"ok": False, "reason": "TRUNCATED_TO_ZERO"}
    assert events.find("job_skip")[0]["component"] == "strategy"
    assert client.sent == []


@pytest.mark.asyncio
async def test_redemption_pass_dry_run(make_config, events):
    config = make_config(KEEPER_MODES="redemption", REDEEM_MUSD_AMOUNT=10**18, DRY_RUN="true")
    client = FakeChainClient(nodes=[borrower(0), borrower(1)])
    client.hints = RedemptionHints(first_hint=borrower(0), partial_nicr=0, truncated_amount=10**18)

    outcome = await run_redemption_pass(client, config, PRICE_E18, SpendTracker())

    assert outcome["ok"] is False
    assert outcome["reason"] == "DRY_RUN"
    assert events.find("redeem_plan")[0]["recipient"] == KEEPER
    assert events.find("redeem_seeds")[0]["upper_seed"] == borrower(0)


@pytest.mark.asyncio
async def test_unconfirmed_job_not_resubmitted(make_config, no_sleep, events):
    config = make_config(MAX_TROVES_PER_JOB=20)
    client = _unsafe_client(3)
    client.receipt_error = TimeExhausted("receipt not found after 120s")
    spend = SpendTracker()
    summary = _summary()

    executor = JobExecutor(client, FakeAction(), config, sleep=no_sleep)
    await run_liquidation_pass(client, config, PRICE_E18, spend, summary, executor=executor)

    assert len(client.sent) == 1
    assert summary.jobs_executed == 1
    assert summary.processed == []
    assert summary.leftover == client.nodes
    # 3 x 100k gas with a 20% buffer at the 2 gwei max fee
    assert spend.spent_wei == 360_000 * 2 * 10**9
    assert events.find("requeue") == []
    suppressed = events.find("requeue_suppressed")[0]
    assert suppressed["reason"] == "TX_UNCONFIRMED"
    assert suppressed["tx_hash"] == "0x" + f"{1:064x}"


@pytest.mark.asyncio
async def test_spend_cap_holds_across_jobs(make_config, no_sleep, events):
    # Each job projects 240k gas x 2 gwei and pays 150k gas x 1 gwei
    config = make_config(MAX_TROVES_PER_JOB=2, MAX_NATIVE_SPENT_PER_RUN=7 * 10**14)
    client = _unsafe_client(6)
    nodes = client.nodes
    spend = SpendTracker()
    summary = _summary()

    executor = JobExecutor(client, FakeAction(), config, sleep=no_sleep)
    await run_liquidation_pass(client, config, PRICE_E18, spend, summary, executor=executor)

    assert [call for call, _, _ in client.sent] == [("liquidate", tuple(nodes[:2])), ("liquidate", tuple(nodes[2:4]))]
    assert spend.spent_wei == 3 * 10**14
    assert spend.spent_wei <= config.MAX_NATIVE_SPENT_PER_RUN
    assert summary.processed == nodes[:4]
    assert summary.leftover == nodes[4:]

    skips = events.find("job_skip")
    assert [skip["reason"] for skip in skips] == ["SPEND_CAP", "SPEND_CAP"]
    assert skips[0]["projected_spend"] == str(3 * 10**14 + 240_000 * 2 * 10**9)
    assert events.find("requeue_suppressed")[0]["reason"] == "SPEND_CAP"
