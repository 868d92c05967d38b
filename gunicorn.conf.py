import os


def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, "") or "").strip() or default)
    except ValueError:
        return default


wsgi_app = "wsgi:app"
bind = f"0.0.0.0:{_env_int('PORT', 5000)}"

worker_class = "gthread"
threads = max(1, _env_int("PYTHON_THREADS", 4))

# MemStorage lives inside one process; only the SQL backend can fan out.
if str(os.getenv("STORAGE_BACKEND", "sql")).strip().lower() == "memory":
    workers = 1
else:
    workers = max(1, _env_int("WEB_CONCURRENCY", 2))

timeout = max(10, _env_int("GUNICORN_TIMEOUT", 60))
graceful_timeout = 30
keepalive = 5

accesslog = "-"
errorlog = "-"
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info").strip().lower()

max_requests = max(0, _env_int("GUNICORN_MAX_REQUESTS", 1000))
max_requests_jitter = 50
