#!/usr/bin/env python3
"""
Principal verification for the integration API.

Routes only need "who is calling, and may they": a verifier turns the bearer
token into a Principal or raises. Tokens are HMAC-signed `email:timestamp`
pairs under a shared key, valid for a max-age window, and the e-mail must be
on the allow-list when one is configured.
"""

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from fastapi import Header, Request

from portfolio_system.core.errors import AuthenticationFailure, PrincipalRejected

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    email: str
    issued_at: int


class PrincipalVerifier:
    """Interface: verify(token) -> Principal, or raise AuthenticationFailure"""

    requires_token = True

    def verify(self, token: str) -> Principal:
        raise NotImplementedError


class DisabledVerifier(PrincipalVerifier):
    """Local development: every caller is the same anonymous principal"""

    requires_token = False

    def verify(self, token: str) -> Principal:
        return Principal(email='anonymous@localhost', issued_at=int(time.time()))


class HmacTokenVerifier(PrincipalVerifier):
    def __init__(self, auth_key: str, allowed_emails: Optional[Iterable[str]] = None,
                 max_age: int = 3600, clock: Callable[[], float] = time.time):
        self.auth_key = auth_key
        self.allowed_emails = {e.lower() for e in (allowed_emails or [])}
        self.max_age = max_age
        self._clock = clock

    def _sign(self, message: str) -> str:
        return hmac.new(self.auth_key.encode(), message.encode(), hashlib.sha256).hexdigest()

    def generate_token(self, email: str) -> str:
        """Token for email, stamped now"""
        timestamp = str(int(self._clock()))
        message = f"{email.lower()}:{timestamp}"
        return f"{message}:{self._sign(message)}"

    def verify(self, token: str) -> Principal:
        try:
            email, timestamp, signature = token.rsplit(':', 2)
            issued_at = int(timestamp)
        except (ValueError, AttributeError) as e:
            raise AuthenticationFailure("Malformed authentication token") from e

        # Constant-time comparison
        if not hmac.compare_digest(signature, self._sign(f"{email}:{timestamp}")):
            raise AuthenticationFailure("Invalid authentication token")

        age = int(self._clock()) - issued_at
        if age > self.max_age:
            raise AuthenticationFailure(f"Token expired: {age}s old")

        if self.allowed_emails and email.lower() not in self.allowed_emails:
            logger.warning(f"Rejected principal {email}")
            raise PrincipalRejected(f"{email} is not authorised for this dashboard")

        return Principal(email=email.lower(), issued_at=issued_at)


def build_verifier(config) -> PrincipalVerifier:
    if not config.API_AUTH_ENABLED:
        return DisabledVerifier()
    return HmacTokenVerifier(
        config.API_AUTH_KEY,
        allowed_emails=config.API_ALLOWED_EMAILS,
        max_age=config.API_TOKEN_MAX_AGE_SECONDS,
    )


def require_principal(request: Request, authorization: Optional[str] = Header(None)) -> Principal:
    """FastAPI dependency guarding /api routes"""
    verifier: PrincipalVerifier = request.app.state.verifier
    if not verifier.requires_token:
        return verifier.verify('')

    if not authorization or not authorization.startswith('Bearer '):
        raise AuthenticationFailure("Authentication required")
    return verifier.verify(authorization[len('Bearer '):].strip())
