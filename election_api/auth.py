"""Password hashing and access tokens."""
import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict

import bcrypt
import jwt

from .entities import Voter, utcnow
from .errors import AuthenticationFailed

logger = logging.getLogger(__name__)


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password with bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        logger.warning("Password check against malformed hash")
        return False


async def hash_password_async(password: str, rounds: int = 12) -> str:
    """bcrypt is CPU bound; run it off the event loop."""
    return await asyncio.to_thread(hash_password, password, rounds)


async def verify_password_async(password: str, password_hash: str) -> bool:
    return await asyncio.to_thread(verify_password, password, password_hash)


class TokenIssuer:
    """Signs and verifies HS256 JWT access tokens."""

    def __init__(self, secret: str, algorithm: str = "HS256", expires_minutes: int = 60 * 24):
        self.secret = secret
        self.algorithm = algorithm
        self.expires = timedelta(minutes=expires_minutes)

    def issue(self, voter: Voter) -> str:
        now = utcnow()
        payload = {
            "sub": voter.id,
            "role": voter.role,
            "company_id": voter.company_id,
            "first_name": voter.first_name,
            "last_name": voter.last_name,
            "iat": now,
            "exp": now + self.expires,
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> Dict[str, Any]:
        """
        Decode a token.

        Raises:
            AuthenticationFailed: token expired, tampered with or malformed
        """
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationFailed("Your token has expired! Please log in again.")
        except jwt.InvalidTokenError:
            raise AuthenticationFailed("Invalid token. Please log in again.")
        if not payload.get("sub"):
            raise AuthenticationFailed("Invalid token. Please log in again.")
        return payload
