"""Pending account-link tokens.

A token is issued to an authenticated web session, shown to the user as a
deep link, and redeemed once when the chat sends ``/start <token>``. Entries
are keyed by the token's SHA-256 digest; the raw token only lives in the deep
link handed to the user.
"""
import hashlib
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

from common.errors import InvalidLinkToken, LinkTokenExpired
from common.telegram import build_deep_link

LINK_TOKEN_TTL = timedelta(minutes=15)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _hash_link_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.strip().encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class LinkToken:
    token_hash: str
    created_at: datetime

    def is_expired(self, now: Optional[datetime] = None, ttl: timedelta = LINK_TOKEN_TTL) -> bool:
        return (now or utc_now()) > self.created_at + ttl


class LinkTokenStore:
    def __init__(self, bot_username: Optional[str] = None, ttl: timedelta = LINK_TOKEN_TTL):
        self.bot_username = bot_username
        self.ttl = ttl
        self._tokens: Dict[str, LinkToken] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)

    def __contains__(self, raw_token: str) -> bool:
        with self._lock:
            return _hash_link_token(raw_token) in self._tokens

    def issue(self) -> Tuple[str, str]:
        """Create a token and return ``(token, deep_link)``."""
        raw_token = secrets.token_urlsafe(24)
        token_hash = _hash_link_token(raw_token)
        now = utc_now()
        with self._lock:
            self._evict_expired(now)
            self._tokens[token_hash] = LinkToken(token_hash=token_hash, created_at=now)
        return raw_token, build_deep_link(raw_token, self.bot_username)

    def validate(self, raw_token: str) -> None:
        """Raise unless the token is pending and fresh. Does not consume it."""
        with self._lock:
            self._check(_hash_link_token(raw_token), utc_now())

    def consume(self, raw_token: str) -> bool:
        """Remove the token. Only the caller that actually removed it gets True."""
        with self._lock:
            return self._tokens.pop(_hash_link_token(raw_token), None) is not None

    def redeem(self, raw_token: str) -> None:
        """Validate and consume in one critical section."""
        token_hash = _hash_link_token(raw_token)
        with self._lock:
            self._check(token_hash, utc_now())
            del self._tokens[token_hash]

    def cleanup_expired(self) -> int:
        with self._lock:
            return self._evict_expired(utc_now())

    # Callers must hold self._lock.
    def _check(self, token_hash: str, now: datetime) -> None:
        entry = self._tokens.get(token_hash)
        if entry is None:
            raise InvalidLinkToken()
        if entry.is_expired(now, self.ttl):
            del self._tokens[token_hash]
            raise LinkTokenExpired()

    def _evict_expired(self, now: datetime) -> int:
        expired = [key for key, entry in self._tokens.items() if entry.is_expired(now, self.ttl)]
        for key in expired:
            del self._tokens[key]
        return len(expired)
