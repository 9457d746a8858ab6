"""API key registry and short-lived bearer tokens.

Clients receive an API key out-of-band (admin endpoint), exchange it for an
HS256 JWT at /auth/token and present that token on /render. The raw key is
still accepted on /render as a legacy credential without expiry.
"""

import secrets
import time
import uuid
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from jose import jwt, JWTError, ExpiredSignatureError
from pydantic import ValidationError as PydanticValidationError

from constants import API_KEY_PREFIX
from core.cache import CacheService
from core.config import Settings
from core.exceptions import AuthError, ForbiddenError
from core.logging import get_logger
from models.auth import ApiKeyRecord, Credentials, Principal, TokenClaims, TokenResponse

logger = get_logger(__name__)

_MAX_ID_ATTEMPTS = 5


class AuthService:
    """Issues API keys and signs/verifies bearer tokens."""

    def __init__(self, cache: CacheService, settings: Settings,
                 clock: Callable[[], float] = time.time):
        self.cache = cache
        self.settings = settings
        self._clock = clock
        self._algorithm = "HS256"
        self.verifiers: List["CredentialVerifier"] = [
            BearerTokenVerifier(self),
            ApiKeyVerifier(self),
        ]

    # =========================================================================
    # API KEYS
    # =========================================================================

    async def create_api_key(self, name: str) -> ApiKeyRecord:
        """Generate and store a fresh key. The caller must keep the raw id safe."""
        for _ in range(_MAX_ID_ATTEMPTS):
            key_id = uuid.uuid4().hex
            if await self.cache.get(API_KEY_PREFIX + key_id) is None:
                break
        else:
            raise RuntimeError("could not allocate a unique API key id")

        record = ApiKeyRecord(id=key_id, name=name)
        await self.cache.set(API_KEY_PREFIX + key_id, record.model_dump(by_alias=True),
                             ttl=self.settings.api_key_ttl)
        logger.info("API key created", name=name, key=key_id)
        return record

    async def get_api_key_record(self, key_id: str) -> Optional[ApiKeyRecord]:
        """Look up a key; None when unknown or expired."""
        if not key_id:
            return None
        data = await self.cache.get(API_KEY_PREFIX + key_id)
        if not isinstance(data, dict):
            return None
        try:
            return ApiKeyRecord.model_validate(data)
        except PydanticValidationError:
            logger.warning("Malformed API key record", key=key_id)
            return None

    def verify_admin_secret(self, provided: Optional[str]) -> None:
        """Gate for privileged actions."""
        if not provided or not secrets.compare_digest(provided.encode(),
                                                      self.settings.admin_key.encode()):
            raise ForbiddenError("forbidden")

    # =========================================================================
    # TOKENS
    # =========================================================================

    async def issue_token(self, key_id: str) -> TokenResponse:
        """Exchange a registered API key for a signed, expiring token."""
        record = await self.get_api_key_record(key_id)
        if record is None:
            raise AuthError("invalid api key")

        now = int(self._clock())
        ttl = self.settings.jwt_ttl_seconds
        payload = {
            "sub": record.id,
            "name": record.name,
            "iat": now,
            "exp": now + ttl,
        }
        token = jwt.encode(payload, self.settings.jwt_secret, algorithm=self._algorithm)
        logger.info("Token issued", key=record.id, expires_in=ttl)
        return TokenResponse(token=token, expires_in=ttl)

    def verify_token(self, token: str) -> TokenClaims:
        """Return the embedded claims, or raise AuthError if forged or expired."""
        try:
            payload = jwt.decode(token, self.settings.jwt_secret, algorithms=[self._algorithm])
        except ExpiredSignatureError:
            raise AuthError("token expired")
        except JWTError as e:
            logger.debug(f"Token verification failed: {e}")
            raise AuthError("invalid token")

        try:
            return TokenClaims.model_validate(payload)
        except PydanticValidationError:
            raise AuthError("invalid token", detail="missing claims")

    # =========================================================================
    # REQUEST GATING
    # =========================================================================

    async def authenticate(self, credentials: Credentials) -> Principal:
        """Run the verifier chain; the first applicable verifier decides."""
        for verifier in self.verifiers:
            principal = await verifier.verify(credentials)
            if principal is not None:
                return principal
        raise AuthError("missing credential")


class CredentialVerifier(ABC):
    """One accepted credential form.

    ``verify`` returns None when the form is not present on the request and
    raises AuthError when it is present but not valid.
    """

    def __init__(self, auth: AuthService):
        self.auth = auth

    @abstractmethod
    async def verify(self, credentials: Credentials) -> Optional[Principal]:
        ...


class BearerTokenVerifier(CredentialVerifier):

    async def verify(self, credentials: Credentials) -> Optional[Principal]:
        if not credentials.bearer_token:
            return None
        claims = self.auth.verify_token(credentials.bearer_token)
        return Principal(subject=claims.sub, name=claims.name, method="bearer")


class ApiKeyVerifier(CredentialVerifier):
    """Legacy raw-key path: no expiry, looked up on every request."""

    async def verify(self, credentials: Credentials) -> Optional[Principal]:
        if not credentials.api_key:
            return None
        record = await self.auth.get_api_key_record(credentials.api_key)
        if record is None:
            raise AuthError("invalid api key")
        return Principal(subject=record.id, name=record.name, method="api_key")
