"""Tests for twitch_client.py module."""

import json
from urllib.parse import parse_qsl

import httpx
import pytest

from twitch_client import TwitchApiError, TwitchClient, build_twitch_client
from conftest import make_config


class FakeHelix:
    """In-memory Helix/OAuth endpoint for httpx.MockTransport."""

    def __init__(self):
        self.requests = []
        self.token_requests = 0
        self.helix_status = 200
        self.reject_first_helix = False
        self.stream_pages = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.host == "id.twitch.tv":
            self.token_requests += 1
            return httpx.Response(
                200,
                json={"access_token": f"token-{self.token_requests}", "expires_in": 3600},
            )

        if self.reject_first_helix:
            self.reject_first_helix = False
            return httpx.Response(401, json={"message": "Invalid OAuth token"})

        if self.helix_status != 200:
            return httpx.Response(self.helix_status, text="rate limited")

        params = request.url.params
        if request.url.path == "/helix/users":
            logins = params.get_list("login")
            return httpx.Response(
                200, json={"data": [{"id": str(i), "login": name} for i, name in enumerate(logins)]}
            )
        if request.url.path == "/helix/games":
            ids = params.get_list("id")
            return httpx.Response(
                200, json={"data": [{"id": game_id, "name": f"Game {game_id}"} for game_id in ids]}
            )
        if request.url.path == "/helix/streams":
            if self.stream_pages is not None:
                return httpx.Response(200, json=self.stream_pages.pop(0))
            logins = params.get_list("user_login")
            return httpx.Response(
                200,
                json={"data": [{"user_login": name, "type": "live"} for name in logins], "pagination": {}},
            )
        return httpx.Response(404)


@pytest.fixture
def helix():
    return FakeHelix()


@pytest.fixture
def client(helix):
    return TwitchClient("client-id", "client-secret", http=httpx.Client(transport=httpx.MockTransport(helix)))


class TestTwitchClient:
    """Test suite for TwitchClient."""

    def test_requires_credentials(self):
        with pytest.raises(ValueError):
            TwitchClient("", "secret")

    def test_build_from_config(self):
        twitch = build_twitch_client(make_config(channels=["alice"]))
        try:
            assert isinstance(twitch, TwitchClient)
        finally:
            twitch.close()

    def test_fetch_users_sends_auth_headers(self, client, helix):
        users = client.fetch_users(["alice", "bob"])

        assert [user["login"] for user in users] == ["alice", "bob"]
        helix_request = helix.requests[-1]
        assert helix_request.headers["Authorization"] == "Bearer token-1"
        assert helix_request.headers["Client-Id"] == "client-id"

        token_request = helix.requests[0]
        body = dict(parse_qsl(token_request.content.decode()))
        assert body["grant_type"] == "client_credentials"

    def test_token_is_cached(self, client, helix):
        client.fetch_users(["alice"])
        client.fetch_games(["1"])
        client.fetch_streams(["alice"])

        assert helix.token_requests == 1

    def test_requests_are_batched_by_100(self, client, helix):
        names = [f"user{i}" for i in range(250)]

        users = client.fetch_users(names)

        assert len(users) == 250
        user_requests = [r for r in helix.requests if r.url.path == "/helix/users"]
        assert [len(r.url.params.get_list("login")) for r in user_requests] == [100, 100, 50]

    def test_empty_input_makes_no_requests(self, client, helix):
        assert client.fetch_games([]) == []
        assert helix.requests == []

    def test_fetch_games(self, client):
        games = client.fetch_games(["509658", "33214"])

        assert games == [
            {"id": "509658", "name": "Game 509658"},
            {"id": "33214", "name": "Game 33214"},
        ]

    def test_fetch_streams_follows_pagination(self, client, helix):
        helix.stream_pages = [
            {"data": [{"user_login": "alice"}], "pagination": {"cursor": "abc"}},
            {"data": [{"user_login": "bob"}], "pagination": {}},
        ]

        streams = client.fetch_streams(["alice", "bob"])

        assert [s["user_login"] for s in streams] == ["alice", "bob"]
        stream_requests = [r for r in helix.requests if r.url.path == "/helix/streams"]
        assert stream_requests[1].url.params["after"] == "abc"

    def test_unauthorized_refreshes_token_once(self, client, helix):
        client.fetch_users(["alice"])
        helix.reject_first_helix = True

        users = client.fetch_users(["alice"])

        assert users == [{"id": "0", "login": "alice"}]
        assert helix.token_requests == 2
        assert helix.requests[-1].headers["Authorization"] == "Bearer token-2"

    def test_http_error_status_raises(self, client, helix):
        helix.helix_status = 429

        with pytest.raises(TwitchApiError) as exc_info:
            client.fetch_streams(["alice"])

        assert "429" in str(exc_info.value)

    def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        client = TwitchClient("id", "secret", http=httpx.Client(transport=httpx.MockTransport(handler)))

        with pytest.raises(TwitchApiError):
            client.fetch_users(["alice"])

    def test_token_failure_raises(self):
        def handler(request):
            return httpx.Response(400, content=json.dumps({"message": "invalid client"}))

        client = TwitchClient("id", "secret", http=httpx.Client(transport=httpx.MockTransport(handler)))

        with pytest.raises(TwitchApiError) as exc_info:
            client.fetch_games(["1"])

        assert "token" in str(exc_info.value).lower()
