"""Bearer-token identity checks for the HTTP worker."""

import hmac
import logging
from typing import Dict, Mapping, Optional

logger = logging.getLogger(__name__)


class UnauthenticatedError(RuntimeError):
    """Raised when a request carries no usable identity."""


def extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthenticatedError("Bearer token required")
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise UnauthenticatedError("Bearer token required")
    return token


def parse_token_map(raw: str) -> Dict[str, str]:
    """Parse ``token:user,token2:user2`` into a token -> user id mapping."""
    tokens: Dict[str, str] = {}
    for chunk in (raw or "").split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        token, sep, user_id = chunk.partition(":")
        if not sep or not token.strip() or not user_id.strip():
            logger.warning("Ignoring malformed API_TOKENS entry")
            continue
        tokens[token.strip()] = user_id.strip()
    return tokens


class StaticTokenVerifier:
    """Resolve a bearer token to a user id from a fixed token table."""

    def __init__(self, tokens: Mapping[str, str]) -> None:
        self._tokens = dict(tokens)

    @classmethod
    def from_env_value(cls, raw: str) -> "StaticTokenVerifier":
        return cls(parse_token_map(raw))

    def __call__(self, token: str) -> str:
        for known, user_id in self._tokens.items():
            if hmac.compare_digest(known.encode("utf-8"), (token or "").encode("utf-8")):
                return user_id
        raise UnauthenticatedError("Invalid bearer token")
