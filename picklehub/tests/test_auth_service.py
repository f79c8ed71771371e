"""
Unit tests for authentication service.
Tests JWT access tokens, invite tokens and identity token verification.
"""
import pytest
from datetime import timedelta
from unittest.mock import patch, MagicMock

import jwt

from picklehub.services import auth_service


class TestJWTTokens:
    """Tests for JWT token creation and verification."""

    def test_create_and_verify_token(self):
        token = auth_service.create_access_token({"user_id": 1})

        payload = auth_service.verify_token(token)

        assert payload["user_id"] == 1
        assert "exp" in payload
        assert "iat" in payload

    def test_custom_expiration(self):
        token = auth_service.create_access_token({"user_id": 1}, expires_delta=timedelta(minutes=5))
        payload = auth_service.verify_token(token)
        assert payload["exp"] - payload["iat"] == 300

    def test_expired_token(self):
        token = auth_service.create_access_token({"user_id": 1}, expires_delta=timedelta(seconds=-1))
        assert auth_service.verify_token(token) is None

    def test_invalid_token(self):
        assert auth_service.verify_token("not.a.token") is None

    def test_token_signed_with_other_key(self):
        token = jwt.encode({"user_id": 1}, "some-other-secret", algorithm="HS256")
        assert auth_service.verify_token(token) is None


class TestInviteTokens:
    def test_invite_token_format(self):
        token = auth_service.generate_invite_token()
        assert len(token) == 64
        int(token, 16)

    def test_invite_tokens_are_unique(self):
        tokens = {auth_service.generate_invite_token() for _ in range(50)}
        assert len(tokens) == 50


class TestGoogleVerification:
    """Tests for verify_google_id_token() with Google's verifier mocked."""

    def test_not_configured(self, monkeypatch):
        for name in ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_ID_IOS", "GOOGLE_CLIENT_ID_WEB"):
            monkeypatch.delenv(name, raising=False)
        with pytest.raises(ValueError, match="not configured"):
            auth_service.verify_google_id_token("token")

    @patch("picklehub.services.auth_service.google_id_token.verify_oauth2_token")
    def test_valid_token(self, mock_verify, monkeypatch):
        monkeypatch.setenv("GOOGLE_CLIENT_ID_WEB", "web-client")
        mock_verify.return_value = {
            "aud": "web-client",
            "sub": "google-123",
            "email": "player@example.com",
            "email_verified": True,
        }

        claims = auth_service.verify_google_id_token("token")

        assert claims["sub"] == "google-123"

    @patch("picklehub.services.auth_service.google_id_token.verify_oauth2_token")
    def test_wrong_audience(self, mock_verify, monkeypatch):
        monkeypatch.setenv("GOOGLE_CLIENT_ID_WEB", "web-client")
        mock_verify.return_value = {"aud": "someone-else", "email": "player@example.com"}

        with pytest.raises(ValueError, match="not issued"):
            auth_service.verify_google_id_token("token")

    @patch("picklehub.services.auth_service.google_id_token.verify_oauth2_token")
    def test_unverified_email(self, mock_verify, monkeypatch):
        monkeypatch.setenv("GOOGLE_CLIENT_ID_WEB", "web-client")
        mock_verify.return_value = {
            "aud": "web-client",
            "email": "player@example.com",
            "email_verified": False,
        }

        with pytest.raises(ValueError, match="not verified"):
            auth_service.verify_google_id_token("token")


class TestAppleVerification:
    def test_not_configured(self, monkeypatch):
        monkeypatch.delenv("APPLE_CLIENT_ID", raising=False)
        with pytest.raises(ValueError, match="not configured"):
            auth_service.verify_apple_identity_token("token")

    def test_invalid_token(self, monkeypatch):
        monkeypatch.setenv("APPLE_CLIENT_ID", "com.picklehub.app")
        jwk_client = MagicMock()
        jwk_client.get_signing_key_from_jwt.side_effect = jwt.PyJWKClientError("no matching key")
        monkeypatch.setattr(auth_service, "_get_apple_jwk_client", lambda: jwk_client)

        with pytest.raises(ValueError, match="Invalid Apple identity token"):
            auth_service.verify_apple_identity_token("token")
