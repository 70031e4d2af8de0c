from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from jose import JWTError, jwt

from ChatBackend.config import Settings
from ChatBackend.errors import ExpiredToken, MalformedToken, TokenSignatureError
from ChatBackend.models.user_model import User


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Mints and verifies stateless HS256 bearer tokens bound to a user id and expiry
class SessionIssuer:
    def __init__(self, settings: Settings, *, clock: Optional[Callable[[], datetime]] = None):
        self.secret = settings.jwt_secret
        self.algorithm = settings.jwt_algorithm
        self.lifetime = settings.token_lifetime
        self._clock = clock or _utcnow

    def issue(self, user: User) -> str:
        now = self._clock()
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "name": user.name,
            "iat": int(now.timestamp()),
            "exp": int((now + self.lifetime).timestamp()),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def decode(self, token: str) -> Dict[str, Any]:
        """Return the verified claims.

        Raises MalformedToken when the token is not a three-segment JWT,
        TokenSignatureError when the signature (or any claim) fails, and
        ExpiredToken once `exp` has passed on the issuer's clock. The signature
        is checked before the expiry, so a tampered expired token reports as a
        bad signature.
        """
        if not isinstance(token, str) or token.count(".") != 2:
            raise MalformedToken()
        try:
            jwt.get_unverified_header(token)
        except JWTError:
            raise MalformedToken()

        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm], options={"verify_exp": False})
        except JWTError as e:
            logger.info("Token verification failed: %s", e)
            raise TokenSignatureError()

        exp = claims.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise TokenSignatureError()
        if self._clock().timestamp() > exp:
            raise ExpiredToken()
        return claims

    # Returns the subject's user id
    def verify(self, token: str) -> int:
        claims = self.decode(token)
        try:
            return int(claims["sub"])
        except (KeyError, TypeError, ValueError):
            raise TokenSignatureError()
