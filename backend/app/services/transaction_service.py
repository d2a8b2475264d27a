"""Transaction service - income/expense entries with encrypted amounts"""
import logging
import math
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from app.core.metrics import amount_decryption_failures_counter
from app.models.transaction import Transaction
from app.utils.encryption import AmountCipher, MalformedCiphertext, DecryptionFailure

logger = logging.getLogger(__name__)

TRANSACTION_TYPES = ("income", "expense")
NOT_FOUND_MESSAGE = "Not authorized or not found"


def decrypt_amount(transaction: Transaction, cipher: AmountCipher) -> float:
    """Decrypt a stored amount

    A corrupt amount is an error, never read as zero.

    Raises:
        MalformedCiphertext, DecryptionFailure: If the stored value is corrupt
    """
    try:
        return cipher.decode(transaction.amount)
    except MalformedCiphertext:
        amount_decryption_failures_counter.labels(reason="malformed").inc()
        logger.error(f"Transaction {transaction.id} has a malformed encrypted amount")
        raise
    except DecryptionFailure:
        amount_decryption_failures_counter.labels(reason="decryption").inc()
        logger.error(f"Transaction {transaction.id} amount failed to decrypt")
        raise


def serialize_transaction(transaction: Transaction, cipher: AmountCipher) -> Dict:
    return {
        "id": transaction.id,
        "userId": transaction.user_id,
        "type": transaction.type,
        "category": transaction.category,
        "amount": decrypt_amount(transaction, cipher),
        "description": transaction.description,
        "date": transaction.date.isoformat() if transaction.date else None,
        "createdAt": transaction.created_at.isoformat() if transaction.created_at else None,
    }


def list_transactions(user_id: int, page: int, limit: int, cipher: AmountCipher, db: Session) -> Dict:
    """Newest-first page of a user's transactions with decrypted amounts"""
    query = db.query(Transaction).filter(Transaction.user_id == user_id)
    total = query.count()
    rows = (
        query.order_by(Transaction.date.desc(), Transaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "success": True,
        "data": [serialize_transaction(t, cipher) for t in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit) if limit else 0,
        },
    }


def create_transaction(
    user_id: int,
    type: str,
    category: str,
    amount: float,
    cipher: AmountCipher,
    db: Session,
    description: Optional[str] = None,
    date: Optional[datetime] = None,
) -> Dict:
    """Store a transaction, encrypting its amount

    Raises:
        ValueError: If the type is unknown or the amount is negative
    """
    if type not in TRANSACTION_TYPES:
        raise ValueError(f"Transaction type must be one of {', '.join(TRANSACTION_TYPES)}")
    if amount < 0:
        raise ValueError("Amount must not be negative")

    transaction = Transaction(
        user_id=user_id,
        type=type,
        category=category,
        amount=cipher.encode(amount),
        description=description,
        date=date or datetime.now(timezone.utc),
    )
    db.add(transaction)
    db.commit()
    db.refresh(transaction)

    logger.info(f"Created {type} transaction {transaction.id} for user {user_id}")
    return serialize_transaction(transaction, cipher)


def delete_transaction(user_id: int, transaction_id: int, db: Session) -> None:
    """Delete one of the user's transactions

    Raises:
        ValueError: If the transaction does not exist or belongs to someone else
    """
    transaction = db.query(Transaction).filter(Transaction.id == transaction_id).first()
    if not transaction or transaction.user_id != user_id:
        raise ValueError(NOT_FOUND_MESSAGE)
    db.delete(transaction)
    db.commit()


def summarize(transactions: Iterable[Transaction], cipher: AmountCipher) -> Dict[str, float]:
    income = 0.0
    expense = 0.0
    for transaction in transactions:
        amount = decrypt_amount(transaction, cipher)
        if transaction.type == "income":
            income += amount
        else:
            expense += amount
    return {"income": income, "expense": expense, "savings": income - expense}


def get_summary(user_id: int, cipher: AmountCipher, db: Session) -> Dict[str, float]:
    """Income, expense and savings totals over all of the user's transactions"""
    transactions: List[Transaction] = db.query(Transaction).filter(Transaction.user_id == user_id).all()
    return summarize(transactions, cipher)
