"""
User registration, login and role administration.
"""

from typing import Dict, List

import structlog

from catalog.auth import PasswordHasher, TokenManager
from catalog.errors import InvalidInput, NotFound, Unauthenticated
from catalog.models import Role, UserAccount

logger = structlog.get_logger(__name__)

MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 6


class UserService:
    """Account operations on top of the user store."""

    def __init__(self, users, tokens: TokenManager, hasher: PasswordHasher = None):
        self.users = users
        self.tokens = tokens
        self.hasher = hasher or PasswordHasher()

    @staticmethod
    def _validate_credentials(username: str, password: str) -> str:
        username = (username or "").strip()
        if not username:
            raise InvalidInput("Username is required.")
        if len(username) < MIN_USERNAME_LENGTH:
            raise InvalidInput(f"Username must be at least {MIN_USERNAME_LENGTH} characters long.")
        if not password:
            raise InvalidInput("Password is required.")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidInput(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")
        return username

    async def register(self, username: str, password: str, role: Role = Role.USER) -> UserAccount:
        """
        Register a new account.

        Raises:
            InvalidInput: if the username or password is too short
            Conflict: if the username is taken
        """
        username = self._validate_credentials(username, password)
        account = await self.users.create(username, self.hasher.hash(password), role)
        logger.info("User registered", user_id=account.id, username=username)
        return account

    async def login(self, username: str, password: str) -> Dict:
        """
        Check credentials and issue an access token.

        Raises:
            Unauthenticated: for unknown users and wrong passwords alike
        """
        username = (username or "").strip()
        if not username or not password:
            raise InvalidInput("Username and password are required.")

        account = await self.users.find_by_username(username)
        if account is None or not self.hasher.verify(password, account.password_hash):
            logger.warning("Failed login attempt", username=username)
            raise Unauthenticated("Invalid credentials.")

        token = self.tokens.create_access_token(account)
        logger.info("User logged in", user_id=account.id)
        return {"token": token, "user_id": account.id, "role": account.role}

    async def set_role(self, username: str, role: Role) -> None:
        """Change the role of an existing account."""
        if not await self.users.set_role(username, role):
            raise NotFound(f"User '{username}' not found")
        logger.info("User role changed", username=username, role=role.value)

    async def list_users(self) -> List[UserAccount]:
        return await self.users.list_users()
