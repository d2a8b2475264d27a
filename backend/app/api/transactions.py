"""Transactions API routes"""
import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.security import require_auth
from app.db.session import get_db
from app.schemas.transactions import TransactionCreate
from app.services.transaction_service import (
    list_transactions, create_transaction, delete_transaction, get_summary
)
from app.utils.encryption import AmountCipher, get_amount_cipher

router = APIRouter(prefix="/api/transactions", tags=["transactions"])
logger = logging.getLogger(__name__)


@router.get("")
def get_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: int = Depends(require_auth),
    cipher: AmountCipher = Depends(get_amount_cipher),
    db: Session = Depends(get_db)
):
    """List the user's transactions, newest first"""
    return list_transactions(user_id, page, limit, cipher, db)


@router.post("", status_code=201)
def add_transaction(
    request_data: TransactionCreate,
    user_id: int = Depends(require_auth),
    cipher: AmountCipher = Depends(get_amount_cipher),
    db: Session = Depends(get_db)
):
    """Record an income or expense"""
    try:
        transaction = create_transaction(
            user_id,
            request_data.type,
            request_data.category,
            request_data.amount,
            cipher,
            db,
            description=request_data.description,
            date=request_data.date,
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"success": True, "data": transaction}


@router.get("/summary")
def transactions_summary(
    user_id: int = Depends(require_auth),
    cipher: AmountCipher = Depends(get_amount_cipher),
    db: Session = Depends(get_db)
):
    """Income, expense and savings totals"""
    return {"success": True, "data": get_summary(user_id, cipher, db)}


@router.delete("/{transaction_id}")
def remove_transaction(
    transaction_id: int,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Delete a transaction (ownership verified)"""
    try:
        delete_transaction(user_id, transaction_id, db)
    except ValueError as e:
        raise HTTPException(403, str(e))
    return {"success": True}
