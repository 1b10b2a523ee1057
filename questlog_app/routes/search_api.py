"""Catalog Search API Blueprint.

Endpoints:
  GET/POST /api/search          cache-first search with IGDB fallback
  GET      /api/search/cached   rank cached results only
  POST     /api/catalog/refresh re-fetch games by IGDB id
  GET      /api/health          database and lock backend status
"""
from __future__ import annotations

from typing import Optional

from flask import Blueprint, current_app, jsonify, request

from questlog_app.database import check_database_connection
from questlog_app.exceptions import CatalogStoreError, ProviderError, SearchValidationError
from questlog_app.extensions import get_smart_search, run_async
from questlog_app.log import log
from questlog_app.rate_limit import limit_heavy, limit_light
from questlog_app.search.smart_search import SmartSearch
from .validators import parse_buckets, parse_id_list, parse_int, parse_search_params


search_bp = Blueprint('search_api', __name__, url_prefix='/api')


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _error(message: str, detail: Optional[str] = None, code: str = 'invalid_request', status: int = 400):
    payload = {'error': message, 'code': code}
    if detail:
        payload['detail'] = detail
    return jsonify(payload), status


def _smart_search() -> SmartSearch:
    return current_app.extensions.get('smart_search') or get_smart_search()


def _validation_error(exc: SearchValidationError):
    return _error(str(exc), detail=exc.field, code='invalid_request')


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@search_bp.route('/search', methods=['GET', 'POST'])
@limit_heavy
def search():
    """Search the catalog, fetching from IGDB when the cache looks thin."""
    if request.method == 'POST':
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return _error('Request body must be a JSON object')
    else:
        payload = request.args.to_dict()

    params, error = parse_search_params(payload)
    if error:
        return _error(error)

    smart = _smart_search()
    try:
        response = run_async(smart.search(**params))
    except SearchValidationError as e:
        return _validation_error(e)

    return jsonify(response.to_dict())


@search_bp.route('/search/cached', methods=['GET'])
@limit_light
def search_cached():
    """Rank cached results for a query without calling IGDB."""
    limit, error = parse_int(request.args.get('limit'), 'limit')
    if error:
        return _error(error)
    buckets, error = parse_buckets(request.args.get('buckets'))
    if error:
        return _error(error)

    try:
        data = _smart_search().search_cached(request.args.get('query', ''), limit, buckets)
    except SearchValidationError as e:
        return _validation_error(e)
    except CatalogStoreError as e:
        log(f"Cached search failed: {e}")
        return _error('Catalog cache unavailable', code='store_unavailable', status=503)

    return jsonify(data)


@search_bp.route('/catalog/refresh', methods=['POST'])
@limit_heavy
def refresh_catalog():
    """Re-fetch games by IGDB id and update the cache."""
    payload = request.get_json(silent=True) or {}
    ids, error = parse_id_list(payload.get('ids'))
    if error:
        return _error(error)

    try:
        entries = run_async(_smart_search().refresh_entries(ids))
    except ProviderError as e:
        log(f"Catalog refresh failed: {e}")
        return _error('Upstream catalog unavailable', detail=str(e), code='upstream_error', status=502)

    found = {entry.external_id for entry in entries}
    return jsonify({
        'refreshed': len(entries),
        'missing': [i for i in ids if i not in found],
        'results': [entry.to_dict() for entry in entries],
    })


@search_bp.route('/health', methods=['GET'])
@limit_light
def health():
    db_ok = check_database_connection()
    smart = _smart_search()
    return jsonify({
        'status': 'ok' if db_ok else 'degraded',
        'database': db_ok,
        'lockBackend': smart.lock.backend,
        'provider': smart.provider.name,
    }), (200 if db_ok else 503)
