"""
Platform Authentication Service.

This module provides the identity service of the data gateway: account
registration, password sign-in, JWT access/refresh tokens and the
`get_current_identity` lookup that the session guard relies on.

Key Components:
- `JWTManager`: Creates and verifies access and refresh tokens.
- `PasswordManager`: bcrypt hashing, verification and length rules.
- `AuthService`: Persists `AuthAccount` rows through an async session factory
  and ties the managers together. Revoked token ids are kept in memory.
- `Identity`: The authenticated identity handed to callers (id, email and the
  username captured at sign-up).
"""

import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional, Set

import bcrypt
import jwt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import select

from core.config import settings
from core.exceptions import AuthenticationError, ValidationError
from core.logging_config import get_logger
from core.models import AuthAccount

logger = get_logger(__name__)

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{3,32}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class TokenType(Enum):
    """Token types"""

    ACCESS = "access"
    REFRESH = "refresh"


@dataclass
class Identity:
    id: str
    email: str
    username: Optional[str] = None


class JWTManager:
    """JWT token management"""

    def __init__(self, secret_key: str = None, algorithm: str = "HS256"):
        self.secret_key = secret_key or settings.jwt_secret_key or self._generate_secret_key()
        self.algorithm = algorithm
        self.access_token_expire = timedelta(minutes=settings.access_token_minutes)
        self.refresh_token_expire = timedelta(days=7)

    def _generate_secret_key(self) -> str:
        """Generate a secure secret key"""
        key = secrets.token_urlsafe(32)
        logger.warning(
            "Generated new JWT secret key. This should be set via JWT_SECRET_KEY environment variable."
        )
        return key

    def _encode(self, identity: Identity, token_type: TokenType, expires: timedelta) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": identity.id,
            "email": identity.email,
            "username": identity.username,
            "type": token_type.value,
            "exp": now + expires,
            "iat": now,
            "jti": secrets.token_urlsafe(16),  # JWT ID for token revocation
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def create_access_token(self, identity: Identity) -> str:
        return self._encode(identity, TokenType.ACCESS, self.access_token_expire)

    def create_refresh_token(self, identity: Identity) -> str:
        return self._encode(identity, TokenType.REFRESH, self.refresh_token_expire)

    def verify_token(
        self, token: str, token_type: TokenType = TokenType.ACCESS
    ) -> Dict[str, Any]:
        """Verify and decode JWT token"""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise AuthenticationError(f"Invalid token: {str(e)}")

        if payload.get("type") != token_type.value:
            raise AuthenticationError(f"Invalid token type. Expected {token_type.value}")

        return payload


class PasswordManager:
    """Password hashing and verification"""

    MIN_LENGTH = 6
    MAX_LENGTH = 128

    def __init__(self, rounds: int = None):
        self.rounds = rounds or settings.bcrypt_rounds

    def hash_password(self, password: str) -> str:
        self.validate_password_strength(password)
        hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(self.rounds))
        return hashed.decode("utf-8")

    @staticmethod
    def verify_password(password: str, hashed: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError as e:
            logger.error(f"Password verification error: {e}")
            return False

    def validate_password_strength(self, password: str) -> bool:
        if len(password) < self.MIN_LENGTH:
            raise ValidationError(
                "password", "***", f"Password must be at least {self.MIN_LENGTH} characters long"
            )
        if len(password) > self.MAX_LENGTH:
            raise ValidationError(
                "password", "***", f"Password must be no more than {self.MAX_LENGTH} characters long"
            )
        return True


class AuthService:
    """Identity service backed by the gateway store"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        jwt_manager: Optional[JWTManager] = None,
        password_manager: Optional[PasswordManager] = None,
    ):
        self.session_factory = session_factory
        self.jwt_manager = jwt_manager or JWTManager()
        self.password_manager = password_manager or PasswordManager()
        self.revoked_tokens: Set[str] = set()  # Token blacklist

    async def sign_up(self, email: str, password: str, username: str) -> Identity:
        """Register a new account"""
        email = (email or "").strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise ValidationError("email", email, "Invalid email address")
        if not USERNAME_PATTERN.match(username or ""):
            raise ValidationError(
                "username",
                username,
                "Username must be 3-32 letters, digits, '.', '_' or '-'",
            )

        account = AuthAccount(
            email=email,
            password_hash=self.password_manager.hash_password(password),
            username=username,
        )
        async with self.session_factory() as session:
            session.add(account)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise ValidationError("email", email, "Email already registered")

        logger.info(f"Registered new account: {username} ({email})")
        return Identity(id=account.id, email=account.email, username=account.username)

    async def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        """Authenticate with email and password and issue tokens"""
        email = (email or "").strip().lower()
        async with self.session_factory() as session:
            result = await session.exec(select(AuthAccount).where(AuthAccount.email == email))
            account = result.first()

            if not account or not self.password_manager.verify_password(
                password, account.password_hash
            ):
                logger.warning(f"Sign-in failed for {email}")
                raise AuthenticationError("Invalid email or password")

            account.last_sign_in_at = datetime.now(timezone.utc)
            session.add(account)
            await session.commit()

        identity = Identity(id=account.id, email=account.email, username=account.username)
        logger.info(f"Account signed in: {email}")
        return self.create_tokens(identity)

    async def refresh(self, refresh_token: str) -> Dict[str, Any]:
        """Issue a new token pair from a refresh token"""
        payload = self.jwt_manager.verify_token(refresh_token, TokenType.REFRESH)
        if payload.get("jti") in self.revoked_tokens:
            raise AuthenticationError("Token has been revoked")

        identity = await self._load_identity(payload["sub"])
        if identity is None:
            raise AuthenticationError("Account no longer exists")

        self.revoked_tokens.add(payload["jti"])
        return self.create_tokens(identity)

    def create_tokens(self, identity: Identity) -> Dict[str, Any]:
        return {
            "access_token": self.jwt_manager.create_access_token(identity),
            "refresh_token": self.jwt_manager.create_refresh_token(identity),
            "token_type": "bearer",
            "expires_in": int(self.jwt_manager.access_token_expire.total_seconds()),
            "user_id": identity.id,
        }

    def sign_out(self, access_token: str) -> None:
        """Revoke an access token"""
        try:
            payload = self.jwt_manager.verify_token(access_token, TokenType.ACCESS)
        except AuthenticationError:
            return  # Token already invalid
        jti = payload.get("jti")
        if jti:
            self.revoked_tokens.add(jti)
            logger.info(f"Revoked token {jti}")

    async def get_current_identity(self, access_token: Optional[str]) -> Optional[Identity]:
        """Resolve an access token to an identity, or None when unauthenticated"""
        if not access_token:
            return None
        try:
            payload = self.jwt_manager.verify_token(access_token, TokenType.ACCESS)
        except AuthenticationError as e:
            logger.info(f"Rejected access token: {e.message}")
            return None
        if payload.get("jti") in self.revoked_tokens:
            return None
        return await self._load_identity(payload["sub"])

    async def _load_identity(self, account_id: str) -> Optional[Identity]:
        async with self.session_factory() as session:
            account = await session.get(AuthAccount, account_id)
        if account is None:
            return None
        return Identity(id=account.id, email=account.email, username=account.username)
