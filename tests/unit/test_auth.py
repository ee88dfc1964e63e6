"""
Unit tests for authentication functions.

Tests the core authentication logic including:
- Password hashing and verification
- Session token creation and validation
- Email verification / password reset tokens
- User lookup and password-change invalidation
"""

from datetime import datetime, timedelta

import pytest
from jose import jwt

from vitalconnect.auth import (
    ALGORITHM,
    SECRET_KEY,
    TokenData,
    authenticate_user,
    changed_password_after,
    create_access_token,
    create_email_token,
    create_reset_token,
    decode_email_token,
    decode_reset_token,
    decode_token,
    get_password_hash,
    get_user,
    verify_password,
)
from vitalconnect.errors import UnauthenticatedError, ValidationFailedError


class TestPasswordHashing:
    """Tests for password hashing functions."""

    def test_password_hashing_creates_hash(self):
        hashed = get_password_hash("Secret123")
        assert hashed
        assert hashed != "Secret123"

    def test_password_hashing_creates_unique_hashes(self):
        """Bcrypt salts every hash."""
        assert get_password_hash("Secret123") != get_password_hash("Secret123")

    def test_verify_password(self):
        hashed = get_password_hash("Secret123")
        assert verify_password("Secret123", hashed)
        assert not verify_password("secret123", hashed)

    def test_password_hashing_handles_unicode(self):
        password = "Passw0rdéñüß"
        assert verify_password(password, get_password_hash(password))


class TestSessionTokens:
    """Tests for JWT session tokens."""

    def test_token_carries_id_and_role(self):
        token = create_access_token({"id": 7, "role": "doctor"})
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        assert payload["id"] == 7
        assert payload["role"] == "doctor"
        assert "exp" in payload and "iat" in payload

    def test_decode_token(self):
        data = decode_token(create_access_token({"id": 3, "role": "patient"}))
        assert isinstance(data, TokenData)
        assert data.user_id == 3
        assert data.role == "patient"

    def test_expired_token_rejected(self):
        token = create_access_token({"id": 3, "role": "patient"}, expires_delta=timedelta(minutes=-1))
        with pytest.raises(UnauthenticatedError):
            decode_token(token)

    def test_tampered_token_rejected(self):
        token = jwt.encode({"id": 3, "role": "admin"}, "not-the-secret", algorithm=ALGORITHM)
        with pytest.raises(UnauthenticatedError):
            decode_token(token)

    def test_token_without_id_rejected(self):
        with pytest.raises(UnauthenticatedError):
            decode_token(create_access_token({"role": "admin"}))


class TestPurposeTokens:
    """Tests for email verification and password reset tokens."""

    def test_email_token_round_trip(self):
        assert decode_email_token(create_email_token(5)).user_id == 5

    def test_reset_token_round_trip(self):
        data = decode_reset_token(create_reset_token(5, "a1b2c3"))
        assert (data.user_id, data.token_id) == (5, "a1b2c3")

    def test_purposes_are_not_interchangeable(self):
        with pytest.raises(ValidationFailedError):
            decode_reset_token(create_email_token(5))

    def test_session_token_is_not_a_reset_token(self):
        with pytest.raises(ValidationFailedError):
            decode_reset_token(create_access_token({"id": 5, "role": "patient"}))

    def test_email_token_is_not_a_session(self):
        with pytest.raises(UnauthenticatedError):
            decode_token(create_email_token(5))

    def test_reset_token_is_not_a_session(self):
        with pytest.raises(UnauthenticatedError):
            decode_token(create_reset_token(5, "a1b2c3"))


class TestUserLookup:
    """Tests for user retrieval and authentication."""

    def test_get_user_is_case_insensitive(self, test_db, patient_user):
        assert get_user(test_db, "SARA@Example.com").id == patient_user.id

    def test_authenticate_user(self, test_db, patient_user):
        assert authenticate_user(test_db, "sara@example.com", "PatientPass123").id == patient_user.id

    def test_authenticate_user_wrong_password(self, test_db, patient_user):
        assert authenticate_user(test_db, "sara@example.com", "wrong") is False

    def test_authenticate_unknown_user(self, test_db):
        assert authenticate_user(test_db, "ghost@example.com", "whatever") is False


class TestPasswordChange:
    def test_token_issued_before_change_is_stale(self, patient_user):
        patient_user.password_changed_at = datetime.utcnow()
        issued = decode_token(
            create_access_token({"id": patient_user.id, "role": "patient"})
        ).issued_at - 3600
        assert changed_password_after(patient_user, issued)

    def test_no_change_means_fresh(self, patient_user):
        assert not changed_password_after(patient_user, 0)
