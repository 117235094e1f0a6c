"""Gunicorn config for container deployment."""
import os

# Bind to the platform's PORT or default 8000
bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"

# Uvicorn async workers. The store lives in process memory, so every worker
# holds its own copy; keep this at 1 unless FUELRECON_PERSIST is on and
# workers are reloaded after imports. Tune via WEB_CONCURRENCY env var.
worker_class = "uvicorn.workers.UvicornWorker"
workers = int(os.environ.get("WEB_CONCURRENCY", "1"))

# Timeout: large statement uploads (5,000 rows) validate row by row
timeout = 120

# Graceful timeout for shutdown
graceful_timeout = 30

# Keep-alive must exceed the proxy keep-alive (commonly 60s)
keepalive = 65

# Logging
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("FUELRECON_LOG_LEVEL", "info").lower()

wsgi_app = "fuelrecon.main:app"
