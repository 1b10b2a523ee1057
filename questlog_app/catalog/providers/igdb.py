"""
================================================================================
QuestLog - IGDB Provider
================================================================================
Upstream catalog provider backed by the IGDB v4 API.

Queries are Apicalypse bodies POSTed to /v4/<endpoint>:
    search "zelda"; fields id,name,...; limit 50; offset 0;

API Info:
  - Auth: Twitch client-credentials token (see catalog.tokens)
  - Rate limit: 4 requests/second
  - Max 500 records per request
================================================================================
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from ...exceptions import ProviderError
from ..models import CatalogEntry
from ..tokens import AccessTokenCache
from .base import BaseCatalogProvider

logger = logging.getLogger(__name__)

COVER_URL = "https://images.igdb.com/igdb/image/upload/t_cover_big/{image_id}.jpg"
SCREENSHOT_URL = "https://images.igdb.com/igdb/image/upload/t_screenshot_big/{filename}"

GAME_FIELDS = (
    "id,name,first_release_date,cover.image_id,summary,storyline,"
    "game_type,category,parent_game,version_parent,"
    "franchise.name,franchises.name,"
    "genres.name,platforms.name,themes.name,player_perspectives.name,game_modes.name,"
    "artworks.url,screenshots.url,videos.video_id,videos.name,websites.category,websites.url,"
    "involved_companies.company.name,involved_companies.developer,involved_companies.publisher,"
    "aggregated_rating,aggregated_rating_count,rating,rating_count,total_rating,total_rating_count,"
    "age_ratings.rating,age_ratings.organization.name,game_status.name,similar_games.name"
)

# IGDB field -> details key, for numeric ratings copied as-is
RATING_FIELDS = {
    'aggregated_rating': 'aggregatedRating',
    'aggregated_rating_count': 'aggregatedRatingCount',
    'rating': 'rating',
    'rating_count': 'ratingCount',
    'total_rating': 'totalRating',
    'total_rating_count': 'totalRatingCount',
}

MAX_PAGE_SIZE = 500


def escape_query(value: str) -> str:
    """Escape a string for use inside an Apicalypse double-quoted literal."""
    return value.replace('\\', '\\\\').replace('"', '\\"')


def _ref_id(value: Any) -> Optional[int]:
    # Expanded references come back as objects, plain ones as ints
    if isinstance(value, dict):
        value = value.get('id')
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    return None


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _items(value: Any) -> List[Dict]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _names(items: Any) -> List[str]:
    return [item['name'] for item in _items(items) if _text(item.get('name'))]


def _image_urls(items: Any) -> List[str]:
    """Rebuild artwork/screenshot URLs at screenshot_big size."""
    urls = []
    for item in _items(items):
        url = _text(item.get('url'))
        if not url:
            continue
        filename = url.rsplit('/', 1)[-1]
        if '.' not in filename:
            filename = f"{filename}.jpg"
        urls.append(SCREENSHOT_URL.format(filename=filename))
    return urls


def _companies(items: Any, role: str) -> List[Dict]:
    flag = role.lower()
    credits = []
    for item in _items(items):
        company = item.get('company')
        if item.get(flag) is True and isinstance(company, dict) and _text(company.get('name')):
            credits.append({'id': company.get('id'), 'name': company['name'], 'role': role})
    return credits


class IGDBProvider(BaseCatalogProvider):
    """IGDB v4 game catalog."""

    id = "igdb"
    name = "IGDB"
    base_url = "https://api.igdb.com/v4"
    rate_limit = 240
    timeout = 15

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        token_cache: Optional[AccessTokenCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        page_size: Optional[int] = None,
    ):
        super().__init__(transport=transport)
        self.client_id = client_id or os.environ.get('IGDB_CLIENT_ID', '')
        self.client_secret = client_secret or os.environ.get('IGDB_CLIENT_SECRET', '')
        self.tokens = token_cache or AccessTokenCache(
            self.client_id, self.client_secret, transport=transport
        )
        if page_size is None:
            page_size = int(os.environ.get('IGDB_PAGE_SIZE', '50'))
        self.page_size = max(1, min(page_size, MAX_PAGE_SIZE))

    async def _auth_headers(self) -> Dict[str, str]:
        token = await self.tokens.get_token()
        return {
            'Client-ID': self.client_id,
            'Authorization': f'Bearer {token}',
        }

    async def _on_unauthorized(self) -> bool:
        self.tokens.invalidate()
        return True

    async def _query(self, endpoint: str, body: str) -> Any:
        return await self._request(
            'POST',
            f"{self.base_url}/{endpoint}",
            content=body.encode('utf-8'),
            headers={'Content-Type': 'text/plain'},
        )

    async def _query_games(self, body: str) -> List[Dict]:
        payload = await self._query('games', body)
        if not isinstance(payload, list):
            raise ProviderError(self.id, f"Expected a list of games, got {type(payload).__name__}")
        return payload

    # =========================================================================
    # SEARCH
    # =========================================================================

    async def search_games(self, query: str, target: int) -> List[CatalogEntry]:
        """
        Search IGDB, paging with explicit offsets.

        Stops when target results are collected or a short page shows the
        upstream has nothing more.
        """
        query = (query or '').strip()
        if not query or target <= 0:
            return []

        entries: List[CatalogEntry] = []
        offset = 0
        while len(entries) < target:
            limit = min(self.page_size, target - len(entries))
            body = (
                f'search "{escape_query(query)}"; '
                f'fields {GAME_FIELDS}; '
                f'limit {limit}; offset {offset};'
            )
            raw = await self._query_games(body)
            entries.extend(self._parse_games(raw))
            if len(raw) < limit:
                break
            offset += len(raw)

        logger.info(f"IGDB search '{query}': {len(entries)} results")
        return entries[:target]

    async def get_by_ids(self, external_ids: List[int]) -> List[CatalogEntry]:
        ids = [int(i) for i in dict.fromkeys(external_ids)]
        entries: List[CatalogEntry] = []
        for start in range(0, len(ids), MAX_PAGE_SIZE):
            chunk = ids[start:start + MAX_PAGE_SIZE]
            body = (
                f'fields {GAME_FIELDS}; '
                f'where id = ({",".join(str(i) for i in chunk)}); '
                f'limit {len(chunk)};'
            )
            entries.extend(self._parse_games(await self._query_games(body)))
        return entries

    async def count_franchise_games(self, franchise_name: str) -> int:
        name = escape_query(franchise_name.strip())
        body = f'where franchise.name ~ "{name}" | franchises.name ~ "{name}";'
        payload = await self._query('games/count', body)
        if not isinstance(payload, dict) or not isinstance(payload.get('count'), int):
            raise ProviderError(self.id, "Malformed count response")
        return payload['count']

    # =========================================================================
    # PARSING
    # =========================================================================

    def _parse_games(self, raw: List[Dict]) -> List[CatalogEntry]:
        entries = []
        for item in raw:
            entry = self._parse_game(item)
            if entry:
                entries.append(entry)
        return entries

    def _parse_game(self, data: Dict) -> Optional[CatalogEntry]:
        if not isinstance(data, dict) or not isinstance(data.get('id'), int) \
                or not isinstance(data.get('name'), str) or not data['name'].strip():
            logger.warning(f"IGDB: skipping malformed record {str(data)[:80]}")
            return None

        release_year = None
        first_release = data.get('first_release_date')
        if isinstance(first_release, (int, float)) and not isinstance(first_release, bool):
            try:
                release_year = datetime.fromtimestamp(first_release, tz=timezone.utc).year
            except (OverflowError, ValueError, OSError):
                logger.warning(f"IGDB: ignoring out-of-range release date {first_release} for game {data['id']}")

        franchises: List[str] = []
        main = data.get('franchise')
        if isinstance(main, dict) and _text(main.get('name')):
            franchises.append(main['name'])
        for name in _names(data.get('franchises')):
            if name not in franchises:
                franchises.append(name)

        cover = data.get('cover')
        cover_url = None
        if isinstance(cover, dict) and _text(cover.get('image_id')):
            cover_url = COVER_URL.format(image_id=cover['image_id'])

        return CatalogEntry(
            external_id=data['id'],
            title=data['name'],
            release_year=release_year,
            type_code=_ref_id(data.get('game_type')),
            category_code=_ref_id(data.get('category')),
            parent_id=_ref_id(data.get('parent_game')),
            version_parent_id=_ref_id(data.get('version_parent')),
            franchise_names=franchises,
            cover_url=cover_url,
            summary=_text(data.get('summary')),
            details=self._parse_details(data),
        )

    def _parse_details(self, data: Dict) -> Dict[str, Any]:
        """Cached projection of the enriched IGDB fields. Empty fields are left out."""
        details: Dict[str, Any] = {
            'genres': _names(data.get('genres')),
            'platforms': _names(data.get('platforms')),
        }
        optional = {
            'storyline': _text(data.get('storyline')),
            'themes': _names(data.get('themes')),
            'playerPerspectives': _names(data.get('player_perspectives')),
            'gameModes': _names(data.get('game_modes')),
            'artworks': _image_urls(data.get('artworks')),
            'screenshots': _image_urls(data.get('screenshots')),
            'videos': [
                {'videoId': v['video_id'], 'name': _text(v.get('name'))}
                for v in _items(data.get('videos')) if _text(v.get('video_id'))
            ],
            'websites': [
                {'category': w.get('category'), 'url': w['url']}
                for w in _items(data.get('websites')) if _text(w.get('url'))
            ],
            'developers': _companies(data.get('involved_companies'), 'Developer'),
            'publishers': _companies(data.get('involved_companies'), 'Publisher'),
            'ageRatings': [
                {
                    'rating': r.get('rating'),
                    'organization': _text((r.get('organization') or {}).get('name'))
                    if isinstance(r.get('organization'), dict) else None,
                }
                for r in _items(data.get('age_ratings'))
            ],
            'gameStatus': _text((data.get('game_status') or {}).get('name'))
            if isinstance(data.get('game_status'), dict) else None,
            'similarGames': _names(data.get('similar_games')),
        }
        details.update({key: value for key, value in optional.items() if value})

        for field_name, key in RATING_FIELDS.items():
            value = data.get(field_name)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                details[key] = value
        return details
