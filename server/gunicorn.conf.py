"""Gunicorn configuration for production deployment.

Reads settings from environment variables (same as config.py).

Each worker owns its own browser pool, rate-limit counters and, without
REDIS_URL, its own in-memory cache. Run more than one worker only with Redis.

Usage:
    gunicorn main:app -c gunicorn.conf.py
"""
import os

host = os.getenv("HOST", "0.0.0.0")
port = os.getenv("PORT", "3000")
log_level = os.getenv("LOG_LEVEL", "INFO").lower()
debug = os.getenv("DEBUG", "false").lower() == "true"

bind = f"{host}:{port}"

# Browser contexts dominate memory, so no cpu-based auto scaling
workers = max(1, int(os.getenv("WORKERS", "1")))
worker_class = "uvicorn.workers.UvicornWorker"

# Must outlast RENDER_TIMEOUT_SECONDS plus extraction
timeout = int(os.getenv("GUNICORN_TIMEOUT", "90"))
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNICORN_KEEPALIVE", "5"))

# Restart workers periodically to release leaked browser memory
max_requests = int(os.getenv("GUNICORN_MAX_REQUESTS", "2000"))
max_requests_jitter = int(os.getenv("GUNICORN_MAX_REQUESTS_JITTER", "200"))

accesslog = "-" if not debug else None
errorlog = "-"
loglevel = log_level

proc_name = "render-gateway"

# Playwright must start inside each worker's event loop
preload_app = False
