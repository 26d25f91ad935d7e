import time
from typing import List, Mapping, Optional

import jwt
import requests

from ..config import AuthConfig
from ..errors import Unauthorized

RSA_ALGORITHMS = ("RS256", "RS384", "RS512")


def bearer_token(authorization: Optional[str]) -> str:
    """Extract the token from an ``Authorization: Bearer ...`` header."""
    if not authorization:
        raise Unauthorized("Missing authorization header")
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Invalid authorization header")
    return token.strip()


def _key_algorithm(key: Mapping) -> str:
    """The verification algorithm comes from the published key, never the token header."""
    alg = key.get("alg")
    return alg if alg in RSA_ALGORITHMS else "RS256"


class IdentityVerifier:
    """Resolve the caller's user id from a bearer token.

    Tokens are checked against a shared HS256 secret when one is configured,
    otherwise against the signing keys published at ``jwks_url``.
    """

    _jwks_cache: List[Mapping] = []
    _last_fetch: float = 0

    def __init__(self, config: Optional[AuthConfig] = None, jwks_ttl_seconds: int = 300) -> None:
        self.config = config or AuthConfig()
        self.jwks_ttl_seconds = jwks_ttl_seconds

    def _fetch_jwks(self) -> None:
        resp = requests.get(self.config.jwks_url, timeout=5)
        resp.raise_for_status()
        self._jwks_cache = resp.json().get("keys", [])
        self._last_fetch = time.time()

    def _decode_options(self) -> dict:
        return {
            "audience": self.config.audience or None,
            "issuer": self.config.issuer or None,
            "leeway": self.config.leeway,
        }

    def _decode_with_jwks(self, token: str) -> Mapping:
        if not self.config.jwks_url:
            raise Unauthorized("Token verification is not configured")
        now = time.time()
        if not self._jwks_cache or now - self._last_fetch > self.jwks_ttl_seconds:
            try:
                self._fetch_jwks()
            except requests.RequestException as exc:
                raise Unauthorized("Signing keys unavailable") from exc

        header = jwt.get_unverified_header(token)
        for key in self._jwks_cache:
            if key.get("kid") == header.get("kid"):
                return jwt.decode(
                    token,
                    jwt.algorithms.RSAAlgorithm.from_jwk(key),
                    algorithms=[_key_algorithm(key)],
                    **self._decode_options(),
                )
        raise jwt.exceptions.InvalidSignatureError("No matching JWK found.")

    def verify_token(self, token: str) -> Mapping:
        if self.config.jwt_secret:
            return jwt.decode(token, self.config.jwt_secret, algorithms=["HS256"], **self._decode_options())
        return self._decode_with_jwks(token)

    def verify(self, authorization: Optional[str]) -> str:
        """Return the ``sub`` claim of a valid bearer token."""
        token = bearer_token(authorization)
        try:
            claims = self.verify_token(token)
        except jwt.PyJWTError as exc:
            raise Unauthorized("Invalid token") from exc
        subject = claims.get("sub")
        if not subject:
            raise Unauthorized("Token has no subject")
        return str(subject)
