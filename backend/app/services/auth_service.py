"""Authentication service - business logic for user authentication"""
import bcrypt
import logging
from typing import Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.user import User
from app.core.metrics import login_attempts_counter
from app.core.security import create_access_token

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def hash_password(password: str) -> str:
    """Hash a password using bcrypt"""
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash"""
    if not password_hash or not password:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Stored hash is not a bcrypt hash
        return False


def normalize_email(email: str) -> str:
    return email.strip().lower()


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
        "tier": user.tier,
        "tierExpiresAt": user.tier_expires_at.isoformat() if user.tier_expires_at else None,
    }


def get_user_by_id(user_id: int, db: Session) -> Optional[User]:
    """Get user by ID"""
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_email(email: str, db: Session) -> Optional[User]:
    """Get user by email"""
    return db.query(User).filter(User.email == normalize_email(email)).first()


def create_user(email: str, password: str, db: Session, name: Optional[str] = None) -> User:
    """Create a new user.

    Args:
        email: User email (must be unique, stored lower-cased).
        password: Raw password, at least 8 characters.
        db: Database session.
        name: Optional display name.

    Raises:
        ValueError: If the password is too short or the email is taken
    """
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    email = normalize_email(email)
    if get_user_by_email(email, db):
        raise ValueError("Email already registered")

    user = User(email=email, name=name or None, password_hash=hash_password(password))
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent registration for the same email
        db.rollback()
        raise ValueError("Email already registered")
    db.refresh(user)
    return user


def authenticate_user(email: str, password: str, db: Session) -> Optional[User]:
    """Authenticate a user by email and password"""
    user = get_user_by_email(email, db)
    if not user:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def register_user(email: str, password: str, db: Session, name: Optional[str] = None) -> dict:
    """Registration flow: create the user and issue an access token

    Raises:
        ValueError: If the password is too short or the email is taken
    """
    user = create_user(email, password, db, name=name)
    logger.info(f"User registered: {user.email} (ID: {user.id})")
    return {
        "success": True,
        "message": "Registration successful",
        "token": create_access_token(user.id, user.email),
        "user": serialize_user(user),
    }


def login_user(email: str, password: str, db: Session) -> dict:
    """Complete login flow: authenticate and return an access token with user info

    Raises:
        ValueError: If the credentials are invalid
    """
    user = authenticate_user(email, password, db)
    if not user:
        login_attempts_counter.labels(status="failure").inc()
        raise ValueError("Invalid credentials")

    login_attempts_counter.labels(status="success").inc()
    logger.info(f"User logged in: {user.email} (ID: {user.id})")

    return {
        "success": True,
        "message": "Login successful",
        "token": create_access_token(user.id, user.email),
        "user": serialize_user(user),
    }
