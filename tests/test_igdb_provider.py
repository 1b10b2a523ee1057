import asyncio

import httpx
import pytest

from questlog_app.catalog.providers.base import RateLimiter
from questlog_app.catalog.providers.igdb import IGDBProvider, escape_query
from questlog_app.catalog.tokens import AccessTokenCache, TWITCH_TOKEN_URL
from questlog_app.exceptions import ProviderAuthError, ProviderError
from questlog_app.search.locks import MemoryQueryLock
from questlog_app.search.smart_search import SmartSearch


def game(game_id, name, **extra):
    data = {'id': game_id, 'name': name}
    data.update(extra)
    return data


class IGDBStub:
    """Scripted IGDB + Twitch endpoints for httpx.MockTransport."""

    def __init__(self, games=None, responses=None):
        self.games = games or []
        self.responses = list(responses or [])
        self.token_requests = 0
        self.game_requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url).startswith(TWITCH_TOKEN_URL):
            self.token_requests += 1
            return httpx.Response(200, json={
                'access_token': f'token-{self.token_requests}',
                'expires_in': 3600,
            })

        body = request.content.decode('utf-8')
        self.game_requests.append((request.url.path, body, dict(request.headers)))
        if self.responses:
            status, payload = self.responses.pop(0)
            return httpx.Response(status, json=payload)
        if request.url.path.endswith('/count'):
            return httpx.Response(200, json={'count': len(self.games)})

        limit = int(body.split('limit ')[1].split(';')[0])
        offset = int(body.split('offset ')[1].split(';')[0]) if 'offset ' in body else 0
        return httpx.Response(200, json=self.games[offset:offset + limit])


def make_provider(stub, page_size=50):
    transport = httpx.MockTransport(stub)
    tokens = AccessTokenCache('client', 'secret', transport=transport, persist=False)
    provider = IGDBProvider('client', 'secret', token_cache=tokens, transport=transport,
                            page_size=page_size)
    provider.rate_limiter = RateLimiter(60000)
    provider.retry_delay = 0
    return provider


def run(coro_factory):
    async def scenario():
        provider, coro = coro_factory()
        try:
            return await coro
        finally:
            await provider.close()
    return asyncio.run(scenario())


def test_search_pages_until_target():
    stub = IGDBStub(games=[game(i, f"Mega Man {i}") for i in range(1, 12)])
    provider = make_provider(stub, page_size=2)

    entries = run(lambda: (provider, provider.search_games("mega man", 5)))

    assert [e.external_id for e in entries] == [1, 2, 3, 4, 5]
    bodies = [body for _, body, _ in stub.game_requests]
    assert 'limit 2; offset 0;' in bodies[0]
    assert 'limit 2; offset 2;' in bodies[1]
    assert 'limit 1; offset 4;' in bodies[2]
    assert stub.token_requests == 1


def test_search_stops_on_short_page():
    stub = IGDBStub(games=[game(1, "Celeste")])
    provider = make_provider(stub, page_size=10)

    entries = run(lambda: (provider, provider.search_games("celeste", 50)))

    assert len(entries) == 1
    assert len(stub.game_requests) == 1


def test_request_carries_auth_and_escaped_query():
    stub = IGDBStub(games=[])
    provider = make_provider(stub)

    run(lambda: (provider, provider.search_games('the "best" game', 5)))

    path, body, headers = stub.game_requests[0]
    assert path == '/v4/games'
    assert body.startswith('search "the \\"best\\" game";')
    assert headers['client-id'] == 'client'
    assert headers['authorization'] == 'Bearer token-1'
    assert escape_query('a\\b') == 'a\\\\b'


def test_parse_game_fields():
    stub = IGDBStub(games=[game(
        1020, "Grand Theft Auto V",
        first_release_date=1379376000,
        cover={'id': 1, 'image_id': 'co2lbd'},
        game_type=0,
        category=0,
        version_parent={'id': 5},
        parent_game=7,
        franchise={'id': 1, 'name': 'Grand Theft Auto'},
        franchises=[{'id': 1, 'name': 'Grand Theft Auto'}, {'id': 2, 'name': 'Rockstar'}],
        genres=[{'id': 1, 'name': 'Shooter'}],
        aggregated_rating=97.1,
    ), {'id': 'bad'}])
    provider = make_provider(stub)

    entries = run(lambda: (provider, provider.search_games("gta", 5)))

    assert len(entries) == 1
    entry = entries[0]
    assert entry.release_year == 2013
    assert entry.cover_url == "https://images.igdb.com/igdb/image/upload/t_cover_big/co2lbd.jpg"
    assert entry.franchise_names == ['Grand Theft Auto', 'Rockstar']
    assert entry.version_parent_id == 5
    assert entry.parent_id == 7
    assert entry.type_code == 0
    assert entry.details['genres'] == ['Shooter']
    assert entry.details['aggregatedRating'] == 97.1


def test_unauthorized_refreshes_token_once():
    stub = IGDBStub(games=[game(1, "Doom")], responses=[(401, {'message': 'Authorization Failure'})])
    provider = make_provider(stub)

    entries = run(lambda: (provider, provider.search_games("doom", 5)))

    assert [e.title for e in entries] == ["Doom"]
    assert stub.token_requests == 2
    assert stub.game_requests[-1][2]['authorization'] == 'Bearer token-2'


def test_server_errors_are_retried():
    stub = IGDBStub(games=[game(1, "Quake")], responses=[(502, {}), (503, {})])
    provider = make_provider(stub)

    entries = run(lambda: (provider, provider.search_games("quake", 5)))

    assert len(entries) == 1
    assert len(stub.game_requests) == 3


def test_persistent_failure_raises_provider_error():
    stub = IGDBStub(responses=[(500, {})] * 3)
    provider = make_provider(stub)

    with pytest.raises(ProviderError) as exc:
        run(lambda: (provider, provider.search_games("quake", 5)))
    assert exc.value.status_code == 500


def test_malformed_payload_raises_provider_error():
    stub = IGDBStub(responses=[(200, {'games': []})])
    provider = make_provider(stub)

    with pytest.raises(ProviderError):
        run(lambda: (provider, provider.search_games("quake", 5)))


def test_count_and_get_by_ids():
    stub = IGDBStub(games=[game(1, "Metroid"), game(2, "Super Metroid")])
    provider = make_provider(stub)

    count = run(lambda: (provider, provider.count_franchise_games("Metroid")))
    assert count == 2
    path, body, _ = stub.game_requests[-1]
    assert path == '/v4/games/count'
    assert 'franchises.name ~ "Metroid"' in body

    entries = run(lambda: (provider, provider.get_by_ids([1, 2])))
    assert 'where id = (1,2);' in stub.game_requests[-1][1]
    assert len(entries) == 2


def test_missing_credentials_raise_auth_error():
    provider = make_provider(IGDBStub())
    provider.tokens = AccessTokenCache('', '', persist=False)

    with pytest.raises(ProviderAuthError):
        run(lambda: (provider, provider.search_games("doom", 5)))


def test_token_cache_persists_between_instances(session_factory):
    stub = IGDBStub()
    transport = httpx.MockTransport(stub)

    first = AccessTokenCache('client', 'secret', session_factory=session_factory, transport=transport)
    second = AccessTokenCache('client', 'secret', session_factory=session_factory, transport=transport)

    assert asyncio.run(first.get_token()) == 'token-1'
    assert asyncio.run(second.get_token()) == 'token-1'
    assert stub.token_requests == 1

    second.invalidate()
    assert asyncio.run(second.get_token()) == 'token-2'


def test_out_of_range_release_date_keeps_the_game():
    stub = IGDBStub(games=[
        game(1, "Zelda", first_release_date=1e20),
        game(2, "Zelda II", first_release_date=-1e20),
    ])
    provider = make_provider(stub)

    entries = run(lambda: (provider, provider.search_games("zelda", 5)))

    assert [e.external_id for e in entries] == [1, 2]
    assert [e.release_year for e in entries] == [None, None]


def test_records_without_a_string_name_are_skipped():
    stub = IGDBStub(games=[
        game(1, 42),
        game(2, "   "),
        game(3, None),
        game(4, "Zelda", summary=7, franchises=[{'id': 1, 'name': 99}]),
    ])
    provider = make_provider(stub)

    entries = run(lambda: (provider, provider.search_games("zelda", 10)))

    assert [e.external_id for e in entries] == [4]
    assert entries[0].summary is None
    assert entries[0].franchise_names == []


def test_search_survives_malformed_upstream_record(repository, settings):
    stub = IGDBStub(games=[game(1, "Zelda", first_release_date=1e20), game(2, 42)])
    smart = SmartSearch(repository, make_provider(stub), MemoryQueryLock(), settings)

    async def scenario():
        try:
            return await smart.search("zelda")
        finally:
            await smart.close()

    response = asyncio.run(scenario())

    assert response.error is None
    assert [r.entry.external_id for r in response.results] == [1]
    assert response.results[0].entry.release_year is None
    assert [e.external_id for e in repository.search_cached("zelda", 10).entries] == [1]


def test_enriched_details_are_cached():
    stub = IGDBStub(games=[game(
        1020, "Grand Theft Auto V",
        storyline="Three criminals.",
        themes=[{'id': 1, 'name': 'Action'}],
        game_modes=[{'id': 2, 'name': 'Multiplayer'}],
        screenshots=[{'id': 1, 'url': '//images.igdb.com/igdb/image/upload/t_thumb/sc6lz2.jpg'}],
        artworks=[{'id': 2, 'url': '//images.igdb.com/igdb/image/upload/t_thumb/ar5l8'}],
        videos=[{'id': 3, 'video_id': 'hBcVUHhwl8E', 'name': 'Trailer'}],
        websites=[{'id': 4, 'category': 1, 'url': 'https://www.rockstargames.com/V/'}],
        involved_companies=[
            {'id': 1, 'company': {'id': 29, 'name': 'Rockstar North'}, 'developer': True, 'publisher': False},
            {'id': 2, 'company': {'id': 10, 'name': 'Rockstar Games'}, 'developer': False, 'publisher': True},
        ],
        age_ratings=[{'id': 5, 'rating': 11, 'organization': {'id': 1, 'name': 'ESRB'}}],
        game_status={'id': 0, 'name': 'Released'},
        total_rating=92.5,
        similar_games=[{'id': 1009, 'name': 'The Last of Us'}],
    )])
    provider = make_provider(stub)

    entry = run(lambda: (provider, provider.search_games("gta", 5)))[0]

    details = entry.details
    assert details['storyline'] == "Three criminals."
    assert details['themes'] == ['Action']
    assert details['gameModes'] == ['Multiplayer']
    assert details['screenshots'] == ['https://images.igdb.com/igdb/image/upload/t_screenshot_big/sc6lz2.jpg']
    assert details['artworks'] == ['https://images.igdb.com/igdb/image/upload/t_screenshot_big/ar5l8.jpg']
    assert details['videos'] == [{'videoId': 'hBcVUHhwl8E', 'name': 'Trailer'}]
    assert details['developers'] == [{'id': 29, 'name': 'Rockstar North', 'role': 'Developer'}]
    assert details['publishers'] == [{'id': 10, 'name': 'Rockstar Games', 'role': 'Publisher'}]
    assert details['ageRatings'] == [{'rating': 11, 'organization': 'ESRB'}]
    assert details['gameStatus'] == 'Released'
    assert details['totalRating'] == 92.5
    assert details['similarGames'] == ['The Last of Us']
    assert 'playerPerspectives' not in details
    assert 'storyline' in stub.game_requests[0][1]
