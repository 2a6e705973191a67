from fastapi import APIRouter, Depends

from app.deps import get_current_user, parse_object_id
from app.models.user_account import UserAccount
from app.services import packages as packages_service

router = APIRouter()


@router.get("")
async def packages_list():
    """Active token packages in display order."""
    items = await packages_service.list_active_packages()
    return {
        "packages": [
            {
                "id": str(p.id),
                "name": p.name,
                "description": p.description,
                "token_amount": p.token_amount,
                "price_usd": p.price_usd,
            }
            for p in items
        ]
    }


@router.post("/{package_id}/purchase")
async def package_purchase(package_id: str, user: UserAccount = Depends(get_current_user)):
    """Buy a package (payment simulated); credits tokens."""
    entry = await packages_service.purchase_package(user.id, parse_object_id(package_id, "package id"))
    return {
        "transaction_id": str(entry.id),
        "token_amount": entry.token_amount,
        "balance": entry.balance_after,
    }
