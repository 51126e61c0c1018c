import pytest

from fieldsync import worker
from fieldsync.domain.integrations.quickbooks.service import QuickBooksSyncService


@pytest.fixture
def worker_env(db, fake_client, monkeypatch):
    monkeypatch.setattr(worker, "SessionLocal", lambda: db)
    monkeypatch.setattr(
        worker, "QuickBooksSyncService", lambda session: QuickBooksSyncService(session, client=fake_client)
    )
    return fake_client


@pytest.mark.asyncio
async def test_run_quickbooks_sync_task_returns_serializable_result(connection, make_customer, worker_env):
    make_customer(company_name="Acme Co")

    result = await worker.run_quickbooks_sync_task({"job_id": "test-job"})

    assert result["success"] is True
    assert result["customers"]["to_qb"]["created"] == 1
    assert result["items"]["from_qb"]["success"] is True
    assert result["summary"] == {
        "total_created": 1,
        "total_updated": 0,
        "total_errors": 0,
        "has_errors": False,
    }
    assert result["error_details"] == []


@pytest.mark.asyncio
async def test_sync_customers_task_passes_direction(connection, worker_env):
    worker_env.remote_customers = {"9": {"Id": "9", "SyncToken": "0", "DisplayName": "Remote Only"}}

    result = await worker.sync_quickbooks_customers_task({}, direction="from_qb")

    assert result["created"] == 1
    assert worker_env.calls == ["iter_customers"]


def test_worker_settings_schedule_full_sync():
    assert worker.run_quickbooks_sync_task in worker.WorkerSettings.functions
    assert worker.sync_quickbooks_customers_task in worker.WorkerSettings.functions
    assert len(worker.WorkerSettings.cron_jobs) == 1
    assert worker.WorkerSettings.max_tries == 1
