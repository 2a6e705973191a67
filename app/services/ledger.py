"""Token ledger: atomic reserve/credit on the account balance plus append-only transactions."""

import asyncio
from datetime import datetime

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import Inc, Set
from pymongo.errors import PyMongoError

from app.core.exceptions import InsufficientBalanceError, NotFoundError, PersistenceFailure
from app.core.logging import get_logger
from app.models.token_transaction import TokenTransaction, TransactionType
from app.models.user_account import UserAccount

log = get_logger(__name__)

CREDIT_TYPES = ("purchase", "refund")


async def get_balance(user_id: PydanticObjectId) -> int:
    """Return current balance for user."""
    try:
        account = await UserAccount.get(user_id)
    except PyMongoError as e:
        raise PersistenceFailure(f"Could not read balance: {e}") from e
    if not account:
        raise NotFoundError("User not found")
    return account.token_balance


async def reserve(
    user_id: PydanticObjectId,
    amount: int,
    generation_id: PydanticObjectId | None = None,
) -> TokenTransaction:
    """
    Debit ``amount`` tokens and append a usage entry.
    The balance check and decrement are one conditional update, so concurrent
    reserves can never drive the balance below zero.
    Raises InsufficientBalanceError without mutating anything when the balance is short.
    """
    if amount <= 0:
        raise ValueError("Reservation amount must be positive")
    try:
        account = await UserAccount.find_one(
            UserAccount.id == user_id,
            UserAccount.token_balance >= amount,
        ).update(
            Inc({UserAccount.token_balance: -amount, UserAccount.total_used: amount}),
            Set({UserAccount.updated_at: _now()}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
    except PyMongoError as e:
        raise PersistenceFailure(f"Could not reserve tokens: {e}") from e
    if account is None:
        current = await get_balance(user_id)
        log.info("reserve_rejected", user_id=str(user_id), amount=amount, balance=current)
        raise InsufficientBalanceError(required=amount, balance=current)

    entry = TokenTransaction(
        user_id=user_id,
        generation_id=generation_id,
        type="usage",
        token_amount=-amount,
        balance_after=account.token_balance,
    )
    undo = {UserAccount.token_balance: amount, UserAccount.total_used: -amount}
    try:
        await entry.insert()
    except PyMongoError as e:
        await _revert(user_id, undo)
        raise PersistenceFailure(f"Could not record token usage: {e}") from e
    except asyncio.CancelledError:
        await asyncio.shield(_revert(user_id, undo))
        raise
    log.info(
        "tokens_reserved",
        user_id=str(user_id),
        amount=amount,
        generation_id=str(generation_id) if generation_id else None,
        balance_after=account.token_balance,
    )
    return entry


async def credit(
    user_id: PydanticObjectId,
    amount: int,
    type: TransactionType,
    generation_id: PydanticObjectId | None = None,
    price_usd: float | None = None,
    package_name: str | None = None,
    payment_reference: str | None = None,
    idempotency_key: str | None = None,
) -> TokenTransaction:
    """
    Add ``amount`` tokens (purchase or refund) and append the matching entry.
    Idempotency: if idempotency_key is set and an entry already exists for it, return it and do not re-apply.
    """
    if type not in CREDIT_TYPES:
        raise ValueError(f"Invalid credit type: {type}")
    if amount <= 0:
        raise ValueError("Credit amount must be positive")
    if idempotency_key:
        existing = await find_by_idempotency_key(user_id, idempotency_key)
        if existing:
            return existing
    try:
        increments = {UserAccount.token_balance: amount}
        if type == "purchase":
            increments[UserAccount.total_purchased] = amount
        account = await UserAccount.find_one(UserAccount.id == user_id).update(
            Inc(increments),
            Set({UserAccount.updated_at: _now()}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
    except PyMongoError as e:
        raise PersistenceFailure(f"Could not credit tokens: {e}") from e
    if account is None:
        raise NotFoundError("User not found")

    entry = TokenTransaction(
        user_id=user_id,
        generation_id=generation_id,
        type=type,
        token_amount=amount,
        balance_after=account.token_balance,
        price_usd=price_usd,
        package_name=package_name,
        payment_reference=payment_reference,
        idempotency_key=idempotency_key,
    )
    try:
        await entry.insert()
    except PyMongoError as e:
        await _revert(user_id, {k: -v for k, v in increments.items()})
        raise PersistenceFailure(f"Could not record token credit: {e}") from e
    log.info(
        "tokens_credited",
        user_id=str(user_id),
        amount=amount,
        type=type,
        generation_id=str(generation_id) if generation_id else None,
        balance_after=account.token_balance,
    )
    return entry


async def find_by_idempotency_key(user_id: PydanticObjectId, key: str) -> TokenTransaction | None:
    try:
        return await TokenTransaction.find_one(
            TokenTransaction.user_id == user_id,
            TokenTransaction.idempotency_key == key,
        )
    except PyMongoError as e:
        raise PersistenceFailure(f"Could not read transactions: {e}") from e


async def list_transactions(
    user_id: PydanticObjectId,
    limit: int = 20,
    offset: int = 0,
) -> list[TokenTransaction]:
    """Newest first."""
    try:
        return (
            await TokenTransaction.find(TokenTransaction.user_id == user_id)
            .sort(-TokenTransaction.created_at)
            .skip(offset)
            .limit(limit)
            .to_list()
        )
    except PyMongoError as e:
        raise PersistenceFailure(f"Could not list transactions: {e}") from e


async def _revert(user_id: PydanticObjectId, increments: dict) -> None:
    """Undo a balance update whose transaction entry could not be written."""
    try:
        await UserAccount.find_one(UserAccount.id == user_id).update(Inc(increments))
    except PyMongoError:
        # caller raises PersistenceFailure either way; this needs manual repair
        log.exception("ledger_revert_failed", user_id=str(user_id), increments={str(k): v for k, v in increments.items()})


def _now() -> datetime:
    return datetime.utcnow()
