from __future__ import annotations

from flask import Flask
from flask_cors import CORS

from app.cli import init_cli
from app.middlewares.error_handler import init_error_handlers
from app.middlewares.logging import init_request_logging
from app.middlewares.rate_limit import init_rate_limiting
from app.middlewares.request_id import init_request_id
from app.middlewares.security_headers import init_security_headers
from app.routes.api import api_bp
from app.routes.core import core_bp
from app.store import init_store
from app.utils.logging import setup_logging
from config import Config, get_config


def create_app(cfg: Config | None = None) -> Flask:
    cfg = cfg or get_config()
    setup_logging(cfg.LOG_LEVEL)

    app = Flask(__name__)
    app.config["CFG"] = cfg
    app.json.sort_keys = False

    CORS(
        app,
        origins=cfg.CORS_ORIGINS,
        supports_credentials=cfg.CORS_ALLOW_CREDENTIALS,
        allow_headers=["Content-Type", "Authorization", "X-Request-ID", "X-Session-Token"],
        expose_headers=["X-Request-ID"],
        methods=["GET", "POST", "OPTIONS"],
        max_age=3600,
    )

    init_request_id(app)
    init_security_headers(app)
    init_rate_limiting(app)
    init_request_logging(app)
    init_error_handlers(app)

    init_store(app, cfg)

    app.register_blueprint(core_bp)
    app.register_blueprint(api_bp)
    init_cli(app)

    return app
