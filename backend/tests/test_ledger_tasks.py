import asyncio
from unittest.mock import patch

from veaportal.core.celery_app import celery_app
from veaportal.models.payment_model import PaymentInitializationCreate
from veaportal.tasks.ledger_tasks import backfill_ledger


def test_task_is_registered_with_app():
    assert backfill_ledger.name in celery_app.tasks


def test_backfill_task_runs_against_configured_store(store, gateway):
    asyncio.run(store.record_payment_initialization(PaymentInitializationCreate(
        reference="T1", amount=500, status="completed", metadata={"studentName": "Ada Obi", "term": "First Term"},
    )))

    with patch("veaportal.tasks.ledger_tasks.get_payment_store", return_value=store), \
            patch("veaportal.tasks.ledger_tasks.get_gateway", return_value=gateway):
        assert backfill_ledger() == 1
        assert backfill_ledger() == 0

    [entry] = asyncio.run(store.list_fee_payment_records())
    assert entry.payment_reference == "T1"
