"""Centralized constants for cache keyspaces and render limits.

Single source of truth for key prefixes shared by the services that write
and read each keyspace.
"""

import re

# =============================================================================
# CACHE KEYSPACES
# =============================================================================

RENDER_KEY_PREFIX = "render:"    # render:<url>    -> RenderResult JSON
IMAGE_KEY_PREFIX = "image:"      # image:<token>   -> PNG bytes
API_KEY_PREFIX = "apikey:"       # apikey:<id>     -> ApiKeyRecord JSON

# =============================================================================
# RENDER LIMITS
# =============================================================================

MAX_TEXT_LENGTH = 20_000
ALLOWED_URL_SCHEMES = frozenset(["http", "https"])
BROWSER_LAUNCH_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]

# =============================================================================
# IMAGE TOKENS
# =============================================================================

IMAGE_TOKEN_LENGTH = 64  # full SHA-256 hex digest
IMAGE_TOKEN_PATTERN = re.compile(r"^[0-9a-f]{64}$")
IMAGE_MEDIA_TYPE = "image/png"

# =============================================================================
# HTTP
# =============================================================================

API_KEY_HEADER = "x-api-key"
ADMIN_KEY_HEADER = "x-admin-key"
RATE_LIMIT_WINDOW_SECONDS = 60

# Paths exempt from the per-client rate limit
RATE_LIMIT_EXEMPT_PATHS = frozenset([
    "/health",
])

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "same-origin",
    "X-DNS-Prefetch-Control": "off",
}

# =============================================================================
# IN-PROCESS CACHE EVICTION
# =============================================================================

# Never evicted, only expired or deleted
PINNED_KEY_PREFIXES = (API_KEY_PREFIX,)
# Evicted before anything else so results never outlive their screenshots
EVICT_FIRST_KEY_PREFIXES = (RENDER_KEY_PREFIX,)

# =============================================================================
# LOGGING
# =============================================================================

# Event fields whose values are credentials and must be shortened in logs
SENSITIVE_LOG_FIELDS = frozenset([
    "api_key",
    "key",
    "token",
    "authorization",
    "admin_key",
    "x_api_key",
    "x_admin_key",
])
# Fields holding cache keys; values under these prefixes embed a credential
CACHE_KEY_LOG_FIELDS = frozenset(["cache_key"])
SENSITIVE_KEY_PREFIXES = (API_KEY_PREFIX,)
