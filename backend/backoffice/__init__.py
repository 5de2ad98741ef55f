from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import logging

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    from .config.settings import load_settings
    app = Flask(__name__)

    app.config.update(load_settings())
    if config:
        # allow tests or callers to override default config values
        app.config.update(config)
    app.logger.setLevel(getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO))

    # Database
    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False, future=True)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    from .services.permissions import permission_store
    permission_store.configure(ttl_seconds=app.config['PERMISSION_CACHE_TTL_SECONDS'])
    permission_store.clear_cache()

    from .services.locks import configure_lock_timeout
    configure_lock_timeout(app.config['LOCK_TIMEOUT_MINUTES'])

    from .routes.iam import iam_bp  # users, login, identity
    from .routes.permissions import perm_bp  # page + CRUD permission admin
    from .routes.branches import branches_bp  # branch master + scope
    from .routes.purchase_orders import po_bp  # purchase orders + PO locks
    from .routes.petty_cash import pettycash_bp  # petty cash requests + locks
    from .routes.finance import finance_bp  # payment terms, payments, bulk payments
    from .routes.audit_log import audit_bp  # audit history
    from .routes.dashboard import dashboard_bp  # landing page data
    app.register_blueprint(iam_bp, url_prefix='/iam')
    app.register_blueprint(perm_bp, url_prefix='/permissions')
    app.register_blueprint(branches_bp, url_prefix='/branches')
    app.register_blueprint(po_bp, url_prefix='/po')
    app.register_blueprint(pettycash_bp, url_prefix='/pettycash')
    app.register_blueprint(finance_bp, url_prefix='/finance')
    app.register_blueprint(audit_bp, url_prefix='/audit-log')
    app.register_blueprint(dashboard_bp)

    from .gate import register_route_gate
    register_route_gate(app)

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    @app.route('/login')
    def login_page():
        # Landing target for gate redirects; credentials are posted to the API
        return {'login_endpoint': '/iam/auth/login'}, 401

    from .errors import BackofficeError

    @app.errorhandler(BackofficeError)
    def handle_domain_error(e):  # type: ignore
        return e.to_dict(), e.status

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                }
            }
            return payload, e.code
        # Unhandled exception
        app.logger.exception('Unhandled exception')
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error'
            }
        }, 500

    return app


def get_db():
    return SessionLocal()
