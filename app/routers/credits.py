from fastapi import APIRouter, Depends, Query

from app.core.pagination import Page, paginate
from app.deps import get_current_user
from app.models.user import User
from app.services import credits as credits_service

router = APIRouter()


@router.get("/balance")
async def credits_balance(user: User = Depends(get_current_user)):
    """Return current credit balance."""
    credits = await credits_service.get_balance(user.id)
    return {"credits": credits}


@router.get("/ledger")
async def credits_ledger(
    user: User = Depends(get_current_user),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> Page[dict]:
    """Return payment records for current user (newest first)."""
    limit, offset = paginate(limit, offset)
    records, total = await credits_service.list_records(user.id, limit, offset)
    items = [
        {
            "id": str(r.id),
            "amount": r.amount,
            "currency": r.currency,
            "credits": r.credits,
            "status": r.status,
            "reason": r.reason,
            "payment_intent_id": r.payment_intent_id,
            "created_at": r.created_at.isoformat(),
        }
        for r in records
    ]
    return Page[dict](items=items, limit=limit, offset=offset, total=total)


@router.get("/pricing")
async def credits_pricing():
    return credits_service.get_pricing()
