from datetime import datetime, timedelta, timezone

import jwt
import pytest

from errors import AuthenticationError
from security import Principal, create_token, decode_token, hash_password, verify_password
from settings import Settings

SETTINGS = Settings(jwt_secret="unit-test-secret")


class TestPasswords:
    def test_hash_is_salted_and_verifiable(self):
        first = hash_password("secret123")
        second = hash_password("secret123")
        assert first != second
        assert verify_password(first, "secret123")
        assert not verify_password(first, "secret124")

    def test_empty_hash_never_verifies(self):
        assert not verify_password("", "anything")


class TestTokens:
    def test_round_trip_carries_identity_and_role(self):
        principal = Principal(id=7, email="ana@example.com", username="ana", is_admin=True, role="ADMIN")
        decoded = decode_token(create_token(principal, SETTINGS), SETTINGS)
        assert decoded == principal

    def test_expires_after_seven_days(self):
        issued = datetime.now(timezone.utc) - timedelta(days=7, minutes=1)
        token = create_token(Principal(id=1, email="a@example.com"), SETTINGS, now=issued)
        with pytest.raises(AuthenticationError):
            decode_token(token, SETTINGS)

    def test_expiry_claim_is_seven_days_out(self):
        issued = datetime(2026, 1, 1, tzinfo=timezone.utc)
        token = create_token(Principal(id=1, email="a@example.com"), SETTINGS, now=issued)
        payload = jwt.decode(token, options={"verify_signature": False})
        assert payload["exp"] - payload["iat"] == 7 * 24 * 3600

    def test_rejects_foreign_signature(self):
        token = create_token(Principal(id=1, email="a@example.com"), Settings(jwt_secret="other"))
        with pytest.raises(AuthenticationError):
            decode_token(token, SETTINGS)

    def test_rejects_garbage_and_missing_claims(self):
        with pytest.raises(AuthenticationError):
            decode_token("not-a-token", SETTINGS)
        no_id = jwt.encode(
            {"email": "a@example.com", "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
            SETTINGS.jwt_secret,
            algorithm="HS256",
        )
        with pytest.raises(AuthenticationError):
            decode_token(no_id, SETTINGS)
