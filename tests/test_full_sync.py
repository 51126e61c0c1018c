import asyncio

import pytest

from fieldsync.domain.integrations.quickbooks.schemas import BidirectionalSyncResult
from fieldsync.domain.integrations.quickbooks.service import QuickBooksSyncService
from fieldsync.models_quickbooks import QuickBooksConnection


@pytest.mark.asyncio
async def test_full_sync_runs_passes_in_order_and_stamps_connection(db, connection, fake_client, make_customer):
    make_customer(company_name="Acme Co")
    fake_client.remote_customers = {"9": {"Id": "9", "SyncToken": "0", "DisplayName": "Remote Only"}}
    fake_client.items = [{"Id": "1", "Name": "Deep Clean"}]

    result = await QuickBooksSyncService(db, client=fake_client).run_full_sync()

    assert fake_client.calls == ["create_customer", "iter_customers", "iter_items"]
    assert result.success is True
    assert result.customers.to_qb.created == 1
    assert result.customers.from_qb.created == 1
    assert result.items.from_qb.created == 1

    summary = result.summary()
    assert summary.total_created == 3
    assert summary.total_updated == 0
    assert summary.total_errors == 0
    assert summary.has_errors is False

    db.refresh(connection)
    assert connection.last_sync_at is not None


@pytest.mark.asyncio
async def test_failure_in_one_pass_does_not_stop_the_next(db, connection, fake_client, make_customer):
    make_customer(company_name="Broken Co")
    fake_client.fail_names.add("Broken Co")
    fake_client.items = [{"Id": "1", "Name": "Deep Clean"}]

    result = await QuickBooksSyncService(db, client=fake_client).run_full_sync()

    assert result.success is False
    assert result.customers.to_qb.errors == 1
    assert result.items.from_qb.created == 1
    assert result.summary().has_errors is True
    assert result.error_details[0].startswith("Customer Broken Co:")

    db.refresh(connection)
    assert connection.last_sync_at is not None


@pytest.mark.asyncio
async def test_full_sync_without_connection_fails_every_pass(db, fake_client):
    result = await QuickBooksSyncService(db, client=fake_client).run_full_sync()

    assert result.success is False
    for sync_pass in (result.customers.to_qb, result.customers.from_qb, result.items.from_qb):
        assert sync_pass.success is False
        assert sync_pass.error_details == ["No active QuickBooks connection"]
    assert result.summary().total_errors == 3
    assert fake_client.calls == []


@pytest.mark.asyncio
async def test_inactive_connection_is_ignored(db, connection, fake_client):
    connection.is_active = False
    db.commit()

    result = await QuickBooksSyncService(db, client=fake_client).run_full_sync()

    assert result.success is False
    assert db.query(QuickBooksConnection).one().last_sync_at is None


@pytest.mark.asyncio
async def test_concurrent_full_syncs_do_not_overlap(db, connection, fake_client, make_customer):
    make_customer(company_name="Acme Co")
    in_flight = 0
    max_in_flight = 0
    original_iter = fake_client.iter_customers

    async def slow_iter(conn):
        nonlocal in_flight, max_in_flight
        in_flight += 1
        max_in_flight = max(max_in_flight, in_flight)
        await asyncio.sleep(0.01)
        async for customer in original_iter(conn):
            yield customer
        in_flight -= 1

    fake_client.iter_customers = slow_iter
    service = QuickBooksSyncService(db, client=fake_client)

    first, second = await asyncio.gather(service.run_full_sync(), service.run_full_sync())

    assert max_in_flight == 1
    assert first.customers.to_qb.created + second.customers.to_qb.created == 1
    assert fake_client.created_payloads == [{"DisplayName": "Acme Co", "CompanyName": "Acme Co"}]


@pytest.mark.asyncio
async def test_sync_customers_directions(db, connection, fake_client, make_customer):
    make_customer(company_name="Acme Co")
    fake_client.remote_customers = {"9": {"Id": "9", "SyncToken": "0", "DisplayName": "Remote Only"}}
    service = QuickBooksSyncService(db, client=fake_client)

    result = await service.sync_customers("bidirectional")

    assert isinstance(result, BidirectionalSyncResult)
    assert result.to_qb.created == 1
    assert result.from_qb.created == 1
    assert result.created == 2
    assert result.success is True
    assert fake_client.calls == ["create_customer", "iter_customers"]

    to_qb = await service.sync_customers("to_qb")
    assert (to_qb.created, to_qb.updated) == (0, 0)

    from_qb = await service.sync_customers("from_qb")
    assert (from_qb.created, from_qb.updated) == (0, 0)


@pytest.mark.asyncio
async def test_sync_customers_rejects_unknown_direction(db, connection, fake_client):
    with pytest.raises(ValueError, match="Invalid direction"):
        await QuickBooksSyncService(db, client=fake_client).sync_customers("sideways")


@pytest.mark.asyncio
async def test_bidirectional_without_connection_reports_both_halves(db, fake_client):
    result = await QuickBooksSyncService(db, client=fake_client).sync_customers("bidirectional")

    assert result.success is False
    assert result.errors == 2
    assert result.to_qb.error_details == ["No active QuickBooks connection"]
    assert result.from_qb.error_details == ["No active QuickBooks connection"]
