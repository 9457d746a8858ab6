"""API key and bearer token models."""

import time
from dataclasses import dataclass
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """JSON in camelCase, Python attributes in snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApiKeyRecord(CamelModel):
    """Registered API key. Never mutated after creation."""

    id: str = Field(min_length=1)
    name: str
    created_at: int = Field(default_factory=lambda: int(time.time() * 1000))  # epoch ms


class TokenClaims(BaseModel):
    """Claims carried by a signed bearer token."""

    sub: str
    name: str
    iat: int
    exp: int


@dataclass(frozen=True)
class Credentials:
    """Credentials presented on a request; either may be absent."""

    bearer_token: Optional[str] = None
    api_key: Optional[str] = None


@dataclass(frozen=True)
class Principal:
    """Authenticated caller."""

    subject: str
    name: str
    method: str  # "bearer" or "api_key"


# =============================================================================
# REQUEST / RESPONSE BODIES
# =============================================================================

class CreateKeyRequest(BaseModel):
    name: Optional[str] = None


class CreateKeyResponse(CamelModel):
    api_key: str
    record: ApiKeyRecord


class TokenRequest(CamelModel):
    api_key: Optional[str] = None


class TokenResponse(BaseModel):
    token: str
    expires_in: int
