"""
Tests for media service access tokens.
"""
import jwt
import pytest
from unittest.mock import patch

from core.media_tokens import MediaTokenError, decode_media_token, generate_media_token

SECRET = "media-secret-for-tests-0123456789"


@pytest.fixture
def media_settings():
    with patch("core.media_tokens.settings") as mock_settings:
        mock_settings.MEDIA_API_KEY = "APIkey"
        mock_settings.MEDIA_API_SECRET = SECRET
        mock_settings.MEDIA_TOKEN_TTL_SECONDS = 3600
        yield mock_settings


class TestGenerateMediaToken:
    """Test generate_media_token."""

    def test_claims(self, media_settings):
        """The token carries identity, issuer and a grant for one room."""
        token = generate_media_token("eve-x1", "media_R1", name="Eve")
        claims = decode_media_token(token)

        assert claims["iss"] == "APIkey"
        assert claims["sub"] == "eve-x1"
        assert claims["name"] == "Eve"
        assert claims["video"] == {
            "roomJoin": True,
            "room": "media_R1",
            "canPublish": True,
            "canSubscribe": True,
        }
        assert claims["exp"] - claims["nbf"] == 3600

    def test_custom_ttl(self, media_settings):
        """An explicit TTL overrides the configured one."""
        claims = decode_media_token(generate_media_token("eve-x1", "media_R1", ttl_seconds=60))

        assert claims["exp"] - claims["nbf"] == 60
        assert "name" not in claims

    def test_wrong_secret_rejected(self, media_settings):
        """Tokens do not verify under another secret."""
        token = generate_media_token("eve-x1", "media_R1")

        with pytest.raises(jwt.InvalidSignatureError):
            jwt.decode(token, "another-secret-for-tests-0123456789", algorithms=["HS256"])

    def test_missing_credentials(self, media_settings):
        """Without credentials no token is issued."""
        media_settings.MEDIA_API_SECRET = ""

        with pytest.raises(MediaTokenError):
            generate_media_token("eve-x1", "media_R1")
