"""Worker reconciliation of abandoned generations and outstanding refunds."""

from datetime import datetime, timedelta

import pytest
from beanie import PydanticObjectId

from app.models.generation import GenerationRecord
from app.models.token_transaction import TokenTransaction
from app.services import ledger
from app.worker.cron import ABANDONED_MESSAGE, run_reconcile_generations

pytestmark = pytest.mark.asyncio


async def _record(user, status: str, updated_at: datetime, refund_due: bool = False) -> GenerationRecord:
    gen_id = PydanticObjectId()
    await ledger.reserve(user.id, 10, generation_id=gen_id)
    record = GenerationRecord(
        id=gen_id,
        user_id=user.id,
        prompt="orphaned",
        model="V3_5",
        duration_seconds=60,
        tokens_reserved=10,
        status=status,
        refund_due=refund_due,
        error_message="GPU on fire" if status == "failed" else None,
        created_at=updated_at,
        updated_at=updated_at,
    )
    await record.insert()
    return record


async def test_stale_runs_are_failed_and_refunded(make_account):
    user = await make_account(balance=100)
    long_ago = datetime.utcnow() - timedelta(hours=2)
    stuck_pending = await _record(user, "pending", long_ago)
    stuck_processing = await _record(user, "processing", long_ago)
    fresh = await _record(user, "processing", datetime.utcnow())

    counts = await run_reconcile_generations()
    assert counts["stale"] == 2
    assert counts["failed"] == 2

    for rec in (stuck_pending, stuck_processing):
        stored = await GenerationRecord.get(rec.id)
        assert stored.status == "failed"
        assert stored.error_message == ABANDONED_MESSAGE
        assert stored.refund_due is False
    assert (await GenerationRecord.get(fresh.id)).status == "processing"
    assert await ledger.get_balance(user.id) == 90

    again = await run_reconcile_generations()
    assert again == {"stale": 0, "failed": 0, "refunds_settled": 0}
    assert await ledger.get_balance(user.id) == 90


async def test_outstanding_refund_is_settled_once(make_account):
    user = await make_account(balance=100)
    record = await _record(user, "failed", datetime.utcnow(), refund_due=True)
    assert await ledger.get_balance(user.id) == 90

    counts = await run_reconcile_generations()
    assert counts["refunds_settled"] == 1
    assert await ledger.get_balance(user.id) == 100
    refunds = await TokenTransaction.find(
        TokenTransaction.generation_id == record.id,
        TokenTransaction.type == "refund",
    ).to_list()
    assert len(refunds) == 1
    assert (await run_reconcile_generations())["refunds_settled"] == 0
