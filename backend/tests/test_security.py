"""Access token and password hashing tests"""
import pytest
from datetime import datetime, timezone, timedelta
from jose import jwt
from prometheus_client import REGISTRY

from app.core.config import settings
from app.core.security import create_access_token, decode_access_token
from app.services.auth_service import hash_password, verify_password, authenticate_user, login_user


def _token(**overrides):
    now = datetime.now(timezone.utc)
    claims = {
        "sub": "7",
        "email": "someone@example.com",
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=1)).timestamp()),
    }
    claims.update(overrides)
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


@pytest.mark.critical
class TestAccessTokens:
    """JWT issue and validation"""

    def test_round_trip(self):
        payload = decode_access_token(create_access_token(7, "someone@example.com"))
        assert payload["sub"] == "7"
        assert payload["email"] == "someone@example.com"
        assert payload["type"] == "access"

    def test_expired_token_rejected(self):
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        with pytest.raises(ValueError):
            decode_access_token(_token(exp=int(past.timestamp())))

    def test_wrong_secret_rejected(self):
        token = jwt.encode({"sub": "7", "type": "access"}, "another-secret", algorithm=settings.JWT_ALGORITHM)
        with pytest.raises(ValueError):
            decode_access_token(token)

    def test_wrong_token_type_rejected(self):
        with pytest.raises(ValueError, match="type"):
            decode_access_token(_token(type="refresh"))

    @pytest.mark.parametrize("subject", ["", "abc", "-1"])
    def test_bad_subject_rejected(self, subject):
        with pytest.raises(ValueError):
            decode_access_token(_token(sub=subject))

    def test_token_for_deleted_user(self, client, db_session, test_user):
        token = create_access_token(test_user.id, test_user.email)
        db_session.delete(test_user)
        db_session.commit()

        response = client.get("/api/subscription", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_basic_scheme_rejected(self, client, test_user):
        token = create_access_token(test_user.id, test_user.email)
        response = client.get("/api/auth/me", headers={"Authorization": f"Basic {token}"})
        assert response.status_code == 401


@pytest.mark.high
class TestPasswords:
    """bcrypt password hashing"""

    def test_hash_verifies(self):
        hashed = hash_password("correct horse battery")
        assert hashed != "correct horse battery"
        assert verify_password("correct horse battery", hashed)
        assert not verify_password("wrong horse battery", hashed)

    def test_malformed_hash_does_not_verify(self):
        assert not verify_password("anything", "not-a-bcrypt-hash")

    def test_authenticate_is_case_insensitive_on_email(self, test_user, db_session):
        user = authenticate_user("RUMINA.USER@example.com", "TestPassword123!", db_session)
        assert user is not None
        assert user.id == test_user.id

    def test_authenticate_unknown_user(self, db_session):
        assert authenticate_user("nobody@example.com", "TestPassword123!", db_session) is None


@pytest.mark.medium
class TestLoginMetrics:
    """Login attempts are counted on the default registry"""

    @staticmethod
    def _count(status):
        return REGISTRY.get_sample_value("rumina_login_attempts_total", {"status": status}) or 0.0

    def test_failed_login_counted(self, db_session, test_user):
        before = self._count("failure")
        with pytest.raises(ValueError):
            login_user(test_user.email, "WrongPassword!", db_session)
        assert self._count("failure") == before + 1

    def test_successful_login_counted(self, db_session, test_user):
        before = self._count("success")
        login_user(test_user.email, "TestPassword123!", db_session)
        assert self._count("success") == before + 1
