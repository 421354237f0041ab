"""Tests for capability tokens and signed download URLs."""

from urllib.parse import parse_qs, urlparse

import pytest

from artifact_vault.auth import (
    ADMIN_PERMISSION,
    ANY_REPOSITORY,
    READ_PERMISSION,
    CapabilityToken,
    ExpiredTokenError,
    InvalidTokenError,
    create_capability_token,
    decode_capability_token,
    extract_token_from_header,
    generate_download_url,
    validate_download_signature,
)
from artifact_vault.auth.tokens import _base64url_encode_json, _sign_hmac

SECRET = "unit-test-secret"


# =============================================================================
# Capability tokens
# =============================================================================


class TestCapabilityTokenRoundTrip:
    """Tests for creating and decoding tokens."""

    def test_claims_survive(self) -> None:
        """Decoded claims match what was issued."""
        token = create_capability_token("deploy-job", "octo/app", runs=[7, 8], secret=SECRET)
        decoded = decode_capability_token(token, SECRET)

        assert decoded.sub == "deploy-job"
        assert decoded.repository == "octo/app"
        assert decoded.runs == [7, 8]
        assert decoded.permissions == [READ_PERMISSION]
        assert decoded.exp > decoded.iat

    def test_all_runs_when_runs_omitted(self) -> None:
        """A token without runs keeps runs as None."""
        token = create_capability_token("job", "octo/app", secret=SECRET)
        assert decode_capability_token(token, SECRET).runs is None

    @pytest.mark.parametrize("subject,repository", [("", "octo/app"), ("job", "")])
    def test_empty_claims_rejected(self, subject: str, repository: str) -> None:
        """Subject and repository are required."""
        with pytest.raises(ValueError):
            create_capability_token(subject, repository, secret=SECRET)


class TestCapabilityTokenValidation:
    """Tests for rejecting bad tokens."""

    def test_wrong_secret(self) -> None:
        """A token signed with another secret is invalid."""
        token = create_capability_token("job", "octo/app", secret="other")
        with pytest.raises(InvalidTokenError):
            decode_capability_token(token, SECRET)

    def test_tampered_payload(self) -> None:
        """Swapping the payload breaks the signature."""
        token = create_capability_token("job", "octo/app", secret=SECRET)
        other = create_capability_token("job", ANY_REPOSITORY, secret=SECRET)
        header, _, signature = token.split(".")
        forged = ".".join([header, other.split(".")[1], signature])

        with pytest.raises(InvalidTokenError):
            decode_capability_token(forged, SECRET)

    def test_expired(self) -> None:
        """A token past its expiry is rejected."""
        token = create_capability_token("job", "octo/app", expiration_seconds=-5, secret=SECRET)
        with pytest.raises(ExpiredTokenError):
            decode_capability_token(token, SECRET)

    @pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c.d"])
    def test_malformed(self, token: str) -> None:
        """Tokens that are not three segments are invalid."""
        with pytest.raises(InvalidTokenError):
            decode_capability_token(token, SECRET)

    def test_non_ascii_signature(self) -> None:
        """Non-ASCII input is an invalid token, not a comparison error."""
        token = create_capability_token("job", "octo/app", secret=SECRET)
        header, payload, _ = token.split(".")
        with pytest.raises(InvalidTokenError):
            decode_capability_token(f"{header}.{payload}.\u00e9", SECRET)
        with pytest.raises(InvalidTokenError):
            decode_capability_token("a.b.\u00e9", SECRET)

    @pytest.mark.parametrize("exp", ["soon", None, [1]])
    def test_signed_token_with_bad_expiry(self, exp) -> None:
        """A correctly signed token with an unusable exp claim is invalid."""
        claims = {"sub": "job", "repository": "octo/app", "iat": 0, "exp": exp}
        header = _base64url_encode_json({"alg": "HS256", "typ": "JWT"})
        signing_input = f"{header}.{_base64url_encode_json(claims)}"
        forged = f"{signing_input}.{_sign_hmac(signing_input, SECRET)}"

        with pytest.raises(InvalidTokenError):
            decode_capability_token(forged, SECRET)


class TestCapabilityTokenGrants:
    """Tests for CapabilityToken.grants."""

    def test_repository_and_run_must_match(self) -> None:
        """A scoped token grants only its repository and runs."""
        token = CapabilityToken(sub="job", exp=0, iat=0, repository="octo/app", runs=[5])
        assert token.grants("octo/app", 5)
        assert not token.grants("octo/app", 6)
        assert not token.grants("octo/lib", 5)

    def test_wildcard_repository(self) -> None:
        """The wildcard repository grants any repository."""
        token = CapabilityToken(sub="job", exp=0, iat=0, repository=ANY_REPOSITORY)
        assert token.grants("anything/else", 99)

    def test_permission_required(self) -> None:
        """Admin access needs the admin permission."""
        reader = CapabilityToken(sub="job", exp=0, iat=0, repository=ANY_REPOSITORY)
        admin = CapabilityToken(
            sub="ops", exp=0, iat=0, repository=ANY_REPOSITORY, permissions=[ADMIN_PERMISSION]
        )
        assert not reader.grants("octo/app", 1, ADMIN_PERMISSION)
        assert admin.grants("octo/app", 1, ADMIN_PERMISSION)
        assert not admin.grants("octo/app", 1, READ_PERMISSION)


class TestExtractTokenFromHeader:
    """Tests for extract_token_from_header."""

    def test_bearer(self) -> None:
        assert extract_token_from_header("Bearer abc.def.ghi") == "abc.def.ghi"
        assert extract_token_from_header("bearer xyz") == "xyz"

    @pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer", "Bearer a b"])
    def test_invalid(self, header) -> None:
        assert extract_token_from_header(header) is None


# =============================================================================
# Signed download URLs
# =============================================================================


class TestDownloadUrls:
    """Tests for signed download locators."""

    def _params(self, url: str) -> tuple[str, str]:
        query = parse_qs(urlparse(url).query)
        return query["expires"][0], query["sig"][0]

    def test_url_shape(self) -> None:
        """URLs point at the bundle endpoint of the artifact."""
        url = generate_download_url(42, SECRET)
        assert urlparse(url).path == "/api/v1/artifacts/42/zip"

    def test_valid_signature(self) -> None:
        """A freshly generated URL validates."""
        expires, sig = self._params(generate_download_url(42, SECRET))
        assert validate_download_signature(42, expires, sig, SECRET) == (True, None)

    def test_signature_bound_to_artifact(self) -> None:
        """A signature for one artifact is rejected for another."""
        expires, sig = self._params(generate_download_url(42, SECRET))
        assert validate_download_signature(43, expires, sig, SECRET) == (False, "invalid signature")

    def test_expired_url(self) -> None:
        """URLs past their expiry are rejected."""
        expires, sig = self._params(generate_download_url(42, SECRET, expiry_seconds=-10))
        assert validate_download_signature(42, expires, sig, SECRET) == (False, "URL has expired")

    def test_missing_or_malformed(self) -> None:
        """Missing parameters and non-numeric expiries are rejected."""
        assert validate_download_signature(42, None, "sig", SECRET)[0] is False
        assert validate_download_signature(42, "123", None, SECRET)[0] is False
        assert validate_download_signature(42, "soon", "sig", SECRET) == (False, "invalid expiry format")

    def test_non_ascii_signature(self) -> None:
        """A non-ASCII signature is rejected like any other bad signature."""
        expires, _ = self._params(generate_download_url(42, SECRET))
        assert validate_download_signature(42, expires, "\u00e9", SECRET) == (False, "invalid signature")
