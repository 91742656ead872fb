"""
Credential handling: password hashing, access tokens and identity resolution.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import structlog
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from catalog.errors import Unauthenticated
from catalog.models import Identity, UserAccount

logger = structlog.get_logger(__name__)


class PasswordHasher:
    """bcrypt password hashing."""

    def __init__(self):
        self.context = CryptContext(schemes=["bcrypt"], deprecated="auto")

    def hash(self, password: str) -> str:
        return self.context.hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        try:
            return self.context.verify(password, password_hash)
        except ValueError:
            # Malformed stored hash
            return False


class TokenManager:
    """Issues and verifies signed access tokens."""

    def __init__(self, secret_key: str, algorithm: str = "HS256", expire_minutes: int = 60):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    def create_access_token(
        self,
        account: UserAccount,
        expires_delta: Optional[timedelta] = None
    ) -> str:
        """
        Create an access token for a user account.

        Args:
            account: Account the token is issued to
            expires_delta: Token lifetime (defaults to the configured lifetime)

        Returns:
            str: encoded JWT
        """
        expire = datetime.utcnow() + (expires_delta or timedelta(minutes=self.expire_minutes))
        payload = {
            "sub": account.id,
            "username": account.username,
            "role": account.role.value,
            "exp": expire,
            "type": "access",
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def decode(self, token: str) -> Dict[str, Any]:
        """
        Verify a token and return its claims.

        Raises:
            Unauthenticated: if the token is expired, malformed or not an access token
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise Unauthenticated("Unauthorized: Token expired")
        except JWTError:
            raise Unauthenticated("Unauthorized: Invalid token")

        if payload.get("type") != "access" or not payload.get("sub"):
            raise Unauthenticated("Unauthorized: Invalid token")
        return payload


class AuthGate:
    """Resolves a bearer credential to the identity it belongs to."""

    def __init__(self, users, tokens: TokenManager):
        """
        Args:
            users: UserStore used to confirm the token subject still exists
            tokens: TokenManager used to verify credentials
        """
        self.users = users
        self.tokens = tokens

    async def resolve(self, credential: Optional[str]) -> Identity:
        """
        Resolve a credential to an identity.

        Raises:
            Unauthenticated: if the credential is missing, malformed, expired,
                or refers to a user that no longer exists
        """
        if not credential:
            raise Unauthenticated("Unauthorized: No token provided")

        payload = self.tokens.decode(credential)
        account = await self.users.find_by_id(payload["sub"])
        if account is None:
            logger.warning("Token subject not found", user_id=payload["sub"])
            raise Unauthenticated("Unauthorized: User not found")

        # Role comes from the stored account so promotions and demotions apply immediately
        return Identity(id=account.id, username=account.username, role=account.role)
