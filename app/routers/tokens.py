from fastapi import APIRouter, Depends, Query

from app.core.pagination import paginate
from app.deps import get_current_user
from app.models.user_account import UserAccount
from app.services import ledger

router = APIRouter()


@router.get("/balance")
async def tokens_balance(user: UserAccount = Depends(get_current_user)):
    """Return current token balance and lifetime totals."""
    balance = await ledger.get_balance(user.id)
    return {
        "balance": balance,
        "total_purchased": user.total_purchased,
        "total_used": user.total_used,
    }


@router.get("/transactions")
async def tokens_transactions(
    user: UserAccount = Depends(get_current_user),
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Return ledger entries for current user (newest first)."""
    limit, offset = paginate(limit, offset)
    entries = await ledger.list_transactions(user.id, limit=limit, offset=offset)
    out = [
        {
            "id": str(e.id),
            "type": e.type,
            "token_amount": e.token_amount,
            "balance_after": e.balance_after,
            "generation_id": str(e.generation_id) if e.generation_id else None,
            "price_usd": e.price_usd,
            "package_name": e.package_name,
            "created_at": e.created_at.isoformat(),
        }
        for e in entries
    ]
    return {"transactions": out, "limit": limit, "offset": offset}
