"""Screenshot blobs addressed by opaque tokens."""

import hashlib
import secrets
import time
from typing import Optional

from constants import IMAGE_KEY_PREFIX, IMAGE_TOKEN_LENGTH, IMAGE_TOKEN_PATTERN
from core.cache import CacheService
from core.exceptions import NotFound
from core.logging import get_logger

logger = get_logger(__name__)


def mint_token(url: str) -> str:
    """SHA-256 over url, a nanosecond timestamp and a random nonce."""
    digest = hashlib.sha256()
    digest.update(url.encode("utf-8"))
    digest.update(str(time.time_ns()).encode("ascii"))
    digest.update(secrets.token_bytes(16))
    return digest.hexdigest()[:IMAGE_TOKEN_LENGTH]


class ImageTokenService:
    """Owns the ``image:<token>`` keyspace."""

    def __init__(self, cache: CacheService):
        self.cache = cache

    async def store(self, url: str, image: bytes, ttl: Optional[int] = None) -> str:
        """Store a screenshot and return the token that retrieves it."""
        token = mint_token(url)
        await self.cache.set(IMAGE_KEY_PREFIX + token, image, ttl=ttl)
        return token

    async def get(self, token: str) -> bytes:
        """Blob for ``token``; NotFound if unknown, expired or malformed."""
        if not IMAGE_TOKEN_PATTERN.match(token or ""):
            raise NotFound("not found or expired")
        blob = await self.cache.get(IMAGE_KEY_PREFIX + token)
        if not isinstance(blob, bytes):
            raise NotFound("not found or expired")
        return blob

    async def exists(self, token: str) -> bool:
        return isinstance(await self.cache.get(IMAGE_KEY_PREFIX + token), bytes)
