import pytest
from click.testing import CliRunner
from datetime import timedelta

from stocksync import scheduler as scheduler_module
from stocksync.cli.main import cli
from stocksync.core.utils import utc_now
from stocksync.models.webhook import WebhookEvent
from stocksync.services.idempotency import IdempotencyLedger


@pytest.mark.asyncio
async def test_cleanup_ledger_task_removes_old_processed_entries(session_factory, mocker):
    mocker.patch.object(scheduler_module, "async_session", session_factory)
    async with session_factory() as session:
        session.add(WebhookEvent(event_id="old", topic="t", shop_domain="s", processed=True,
                                 received_at=utc_now() - timedelta(days=30)))
        session.add(WebhookEvent(event_id="fresh", topic="t", shop_domain="s", processed=True))
        await session.commit()

    deleted = await scheduler_module.cleanup_ledger_task(older_than_days=7)

    assert deleted == 1
    async with session_factory() as session:
        assert (await IdempotencyLedger(session).get_stats())["total"] == 1


@pytest.mark.asyncio
async def test_scheduler_registers_cleanup_job(monkeypatch, settings):
    monkeypatch.setattr(settings, "LEDGER_CLEANUP_ENABLED", True)
    monkeypatch.setattr(scheduler_module, "scheduler", None)

    sched = scheduler_module.create_scheduler()

    job = sched.get_job("cleanup_ledger")
    assert job is not None
    assert job.name == "Cleanup Webhook Ledger"
    assert scheduler_module.get_scheduler_status()["status"] == "stopped"


def test_cli_lists_commands():
    result = CliRunner().invoke(cli, ["--help"])

    assert result.exit_code == 0
    for command in ("cleanup-ledger", "ledger-stats", "sync-catalog", "conflict-stats", "inventory-status"):
        assert command in result.output
