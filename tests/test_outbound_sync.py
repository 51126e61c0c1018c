import pytest

from fieldsync.domain.integrations.quickbooks.service import QuickBooksSyncService
from fieldsync.models import Customer
from fieldsync.models_quickbooks import QuickBooksMapping, QuickBooksSyncLog


def _mapping_for(db, customer_id):
    return (
        db.query(QuickBooksMapping)
        .filter(
            QuickBooksMapping.local_entity_type == "CUSTOMER",
            QuickBooksMapping.local_entity_id == customer_id,
        )
        .one()
    )


@pytest.mark.asyncio
async def test_new_customer_is_created_in_quickbooks(db, connection, fake_client, make_customer):
    customer = make_customer(company_name="Acme Co", email="a@acme.com")

    result = await QuickBooksSyncService(db, client=fake_client).sync_customers_to_quickbooks()

    assert result.success is True
    assert result.created == 1
    assert result.updated == 0
    assert result.errors == 0

    mapping = _mapping_for(db, customer.id)
    assert mapping.sync_status == "SYNCED"
    assert mapping.quickbooks_type == "Customer"
    assert mapping.quickbooks_id == "100"
    assert mapping.sync_version == "0"
    assert mapping.last_sync_at is not None

    log = db.query(QuickBooksSyncLog).one()
    assert log.status == "SUCCESS"
    assert log.direction == "TO_QB"
    assert log.operation_type == "CREATE"
    assert log.request_data["PrimaryEmailAddr"] == {"Address": "a@acme.com"}
    assert log.response_data["Id"] == "100"

    db.refresh(customer)
    assert customer.quickbooks_id == "100"


@pytest.mark.asyncio
async def test_payload_without_email_or_phone_omits_those_keys(db, connection, fake_client, make_customer):
    make_customer(company_name="Quiet Co")

    await QuickBooksSyncService(db, client=fake_client).sync_customers_to_quickbooks()

    sent = fake_client.created_payloads[0]
    assert "PrimaryEmailAddr" not in sent
    assert "PrimaryPhone" not in sent


@pytest.mark.asyncio
async def test_second_run_is_a_no_op(db, connection, fake_client, make_customer):
    make_customer(company_name="Acme Co")
    make_customer(first_name="Dana", last_name="Ruiz")
    service = QuickBooksSyncService(db, client=fake_client)

    first = await service.sync_customers_to_quickbooks()
    second = await service.sync_customers_to_quickbooks()

    assert first.created == 2
    assert second.created == 0
    assert second.updated == 0
    assert second.success is True
    assert db.query(QuickBooksMapping).count() == 2


@pytest.mark.asyncio
async def test_one_failure_does_not_abort_the_batch(db, connection, fake_client, make_customer):
    good_1 = make_customer(company_name="Alpha")
    bad = make_customer(company_name="Broken Co")
    good_2 = make_customer(company_name="Gamma")
    fake_client.fail_names.add("Broken Co")

    result = await QuickBooksSyncService(db, client=fake_client).sync_customers_to_quickbooks()

    assert result.success is False
    assert result.errors == 1
    assert result.created == 2
    assert len(result.error_details) == 1
    assert result.error_details[0].startswith("Customer Broken Co:")
    assert "Duplicate Name Exists Error" in result.error_details[0]

    assert _mapping_for(db, good_1.id).sync_status == "SYNCED"
    assert _mapping_for(db, good_2.id).sync_status == "SYNCED"

    failed = _mapping_for(db, bad.id)
    assert failed.sync_status == "ERROR"
    assert failed.quickbooks_id is None
    assert len(failed.sync_errors) == 1
    assert "Duplicate Name Exists Error" in failed.sync_errors[0]["error"]

    error_log = db.query(QuickBooksSyncLog).filter(QuickBooksSyncLog.status == "ERROR").one()
    assert error_log.operation_type == "SYNC"
    assert error_log.direction == "TO_QB"
    assert error_log.local_entity_id == bad.id


@pytest.mark.asyncio
async def test_failed_customer_is_retried_and_created_next_run(db, connection, fake_client, make_customer):
    customer = make_customer(company_name="Broken Co")
    fake_client.fail_names.add("Broken Co")
    service = QuickBooksSyncService(db, client=fake_client)

    await service.sync_customers_to_quickbooks()
    fake_client.fail_names.clear()
    retry = await service.sync_customers_to_quickbooks()

    assert retry.created == 1
    assert retry.errors == 0
    mapping = _mapping_for(db, customer.id)
    assert mapping.sync_status == "SYNCED"
    assert mapping.sync_errors == []
    assert db.query(QuickBooksMapping).count() == 1


@pytest.mark.asyncio
async def test_sync_errors_keep_only_the_most_recent(db, connection, fake_client, make_customer):
    customer = make_customer(company_name="Broken Co")
    fake_client.fail_names.add("Broken Co")
    service = QuickBooksSyncService(db, client=fake_client, max_sync_errors=3)

    for _ in range(5):
        await service.sync_customers_to_quickbooks()

    mapping = _mapping_for(db, customer.id)
    assert mapping.sync_status == "ERROR"
    assert len(mapping.sync_errors) == 3
    assert db.query(QuickBooksSyncLog).filter(QuickBooksSyncLog.status == "ERROR").count() == 5


@pytest.mark.asyncio
async def test_modified_customer_is_pushed_as_update(db, connection, fake_client, make_customer):
    customer = make_customer(company_name="Acme Co")
    service = QuickBooksSyncService(db, client=fake_client)
    await service.sync_customers_to_quickbooks()

    customer = db.query(Customer).filter(Customer.id == customer.id).one()
    customer.phone = "555-0199"
    db.commit()
    assert service.mark_customer_modified(customer.id) is True

    result = await service.sync_customers_to_quickbooks()

    assert result.updated == 1
    assert result.created == 0
    sent = fake_client.updated_payloads[0]
    assert sent["Id"] == "100"
    assert sent["SyncToken"] == "0"
    assert sent["PrimaryPhone"] == {"FreeFormNumber": "555-0199"}

    mapping = _mapping_for(db, customer.id)
    assert mapping.sync_status == "SYNCED"
    assert mapping.sync_version == "1"

    update_log = (
        db.query(QuickBooksSyncLog).filter(QuickBooksSyncLog.operation_type == "UPDATE").one()
    )
    assert update_log.direction == "TO_QB"


@pytest.mark.asyncio
async def test_batch_is_bounded(db, connection, fake_client, make_customer):
    for i in range(5):
        make_customer(company_name=f"Customer {i}")

    result = await QuickBooksSyncService(db, client=fake_client, batch_size=3).sync_customers_to_quickbooks()

    assert result.created == 3
    assert [p["DisplayName"] for p in fake_client.created_payloads] == [
        "Customer 0",
        "Customer 1",
        "Customer 2",
    ]


@pytest.mark.asyncio
async def test_no_active_connection_reports_single_error(db, fake_client, make_customer):
    make_customer(company_name="Acme Co")

    result = await QuickBooksSyncService(db, client=fake_client).sync_customers_to_quickbooks()

    assert result.success is False
    assert result.errors == 1
    assert result.error_details == ["No active QuickBooks connection"]
    assert fake_client.calls == []
    assert db.query(QuickBooksMapping).count() == 0
