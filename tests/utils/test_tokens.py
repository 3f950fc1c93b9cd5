"""Tests for bearer token helpers."""

import jwt

from sheetboard.utils.security import create_access_token, decode_access_token, owner_from_token

SECRET = "unit-test-secret"


class TestTokens:
    def test_round_trip_owner(self):
        token = create_access_token({"sub": "user-42"}, SECRET)
        assert owner_from_token(token, SECRET) == "user-42"
        assert decode_access_token(token, SECRET)["sub"] == "user-42"

    def test_wrong_secret(self):
        token = create_access_token({"sub": "user-42"}, SECRET)
        assert owner_from_token(token, "another-secret") is None

    def test_expired(self):
        token = create_access_token({"sub": "user-42"}, SECRET, expires_minutes=-1)
        assert decode_access_token(token, SECRET) is None

    def test_missing_sub(self):
        token = create_access_token({"role": "viewer"}, SECRET)
        assert owner_from_token(token, SECRET) is None

    def test_numeric_sub_becomes_string(self):
        token = jwt.encode({"sub": "7"}, SECRET, algorithm="HS256")
        assert owner_from_token(token, SECRET) == "7"

    def test_garbage(self):
        assert owner_from_token("not.a.token", SECRET) is None
