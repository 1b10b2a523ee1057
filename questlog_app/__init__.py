# Load environment variables FIRST before any other imports
from dotenv import load_dotenv
load_dotenv()

import os
import time
import uuid
import secrets

from flask import Flask, g, request


def create_app(test_config=None):
    """Create and configure an instance of the Flask application.

    test_config keys understood besides Flask's own:
        DATABASE_URL          bind the catalog database (e.g. "sqlite://")
        SEARCH_SETTINGS       a SearchSettings instance
        CATALOG_PROVIDER      provider instance replacing IGDB
        DISABLE_RATE_LIMITING turn Flask-Limiter off
    """
    app = Flask(__name__, instance_relative_config=True)

    # =============================================================================
    # CONFIGURATION
    # =============================================================================
    app.config.from_mapping(
        SECRET_KEY=os.environ.get('SECRET_KEY') or secrets.token_hex(32),
        DATABASE_URL=os.environ.get('DATABASE_URL'),
        DISABLE_RATE_LIMITING=os.environ.get('DISABLE_RATE_LIMITING', 'false').lower() in ('true', '1', 'yes'),
        HOST=os.environ.get('FLASK_HOST', '127.0.0.1'),
        PORT=int(os.environ.get('FLASK_PORT', '5000')),
        DEBUG=os.environ.get('FLASK_DEBUG', 'false').lower() in ('true', '1', 'yes'),
    )
    if test_config:
        app.config.update(test_config)
    app.json.sort_keys = False

    # Ensure instance folder exists
    os.makedirs(app.instance_path, exist_ok=True)

    # =============================================================================
    # LOGGING, RATE LIMITING, DATABASE
    # =============================================================================
    from .log import log, debug_log_event
    from .rate_limit import init_rate_limiting
    from .database import configure_database, init_database, get_engine

    init_rate_limiting(app)

    if app.config.get('DATABASE_URL'):
        configure_database(app.config['DATABASE_URL'])
    init_database(engine=get_engine())

    @app.before_request
    def assign_request_id():
        g.request_id = uuid.uuid4().hex[:12]
        g.request_start = time.time()

    @app.after_request
    def debug_request_log(response):
        duration_ms = None
        start_time = getattr(g, 'request_start', None)
        if start_time:
            duration_ms = int((time.time() - start_time) * 1000)
        debug_log_event({
            'event': 'request',
            'request_id': getattr(g, 'request_id', None),
            'method': request.method,
            'path': request.path,
            'query': request.query_string.decode('utf-8', errors='ignore'),
            'status': response.status_code,
            'duration_ms': duration_ms,
            'remote_addr': request.remote_addr,
        })
        return response

    @app.teardown_request
    def debug_exception_log(error=None):
        if not error:
            return
        debug_log_event({
            'event': 'exception',
            'request_id': getattr(g, 'request_id', None),
            'path': request.path,
            'error_type': error.__class__.__name__,
            'error': str(error)
        })

    # =============================================================================
    # APPLICATION EXTENSIONS (Smart Search)
    # =============================================================================
    from .extensions import init_smart_search
    from .search.config import SearchSettings

    settings = app.config.get('SEARCH_SETTINGS') or SearchSettings.from_env()
    smart_search = init_smart_search(settings, provider=app.config.get('CATALOG_PROVIDER'))
    app.extensions['smart_search'] = smart_search

    # =============================================================================
    # BLUEPRINTS & ROUTES
    # =============================================================================
    from .routes.search_api import search_bp

    app.register_blueprint(search_bp)

    log(f"QuestLog ready (locks={smart_search.lock.backend}, provider={smart_search.provider.name})")
    return app

# App instance should be created by the caller (run.py or WSGI entrypoint)
