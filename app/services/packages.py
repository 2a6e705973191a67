"""Token packages and (simulated) purchases."""

import uuid

from beanie import PydanticObjectId
from pymongo.errors import PyMongoError

from app.core.exceptions import NotFoundError, PersistenceFailure
from app.core.logging import get_logger
from app.models.token_package import TokenPackage
from app.models.token_transaction import TokenTransaction
from app.services import ledger

log = get_logger(__name__)


async def list_active_packages() -> list[TokenPackage]:
    try:
        return await TokenPackage.find(TokenPackage.is_active == True).sort(  # noqa: E712
            +TokenPackage.display_order
        ).to_list()
    except PyMongoError as e:
        raise PersistenceFailure(f"Could not list packages: {e}") from e


async def purchase_package(
    user_id: PydanticObjectId,
    package_id: PydanticObjectId,
    payment_reference: str | None = None,
) -> TokenTransaction:
    """
    Credit the package's tokens. Payment capture is simulated; a caller that already
    holds a real payment reference passes it and gets idempotent application.
    """
    try:
        pkg = await TokenPackage.get(package_id)
    except PyMongoError as e:
        raise PersistenceFailure(f"Could not read package: {e}") from e
    if not pkg or not pkg.is_active:
        raise NotFoundError("Package not found")
    reference = payment_reference or f"sim_{uuid.uuid4().hex}"
    entry = await ledger.credit(
        user_id,
        pkg.token_amount,
        "purchase",
        price_usd=pkg.price_usd,
        package_name=pkg.name,
        payment_reference=reference,
        idempotency_key=f"purchase:{reference}",
    )
    log.info("tokens_purchased", user_id=str(user_id), package=pkg.name, tokens=pkg.token_amount)
    from app.core.audit import log_event
    await log_event(
        str(user_id),
        "tokens_purchased",
        "token_package",
        str(pkg.id),
        {"tokens": pkg.token_amount, "price_usd": pkg.price_usd, "payment_reference": reference},
    )
    return entry
