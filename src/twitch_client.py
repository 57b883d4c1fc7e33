"""Twitch Helix client abstraction module.

All Helix HTTP usage is isolated here. No other module talks to
api.twitch.tv.

Uses an app access token (client credentials grant) for the public
users, games and streams endpoints.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import httpx

from config import Config


logger = logging.getLogger(__name__)

HELIX_BASE = "https://api.twitch.tv/helix"
OAUTH_BASE = "https://id.twitch.tv/oauth2"

# Helix accepts at most 100 ids/logins per request
MAX_IDS_PER_REQUEST = 100

# Refresh the app token this many seconds before Twitch expires it
TOKEN_EXPIRY_MARGIN_SECONDS = 300


class TwitchApiError(Exception):
    """Raised when a Helix or OAuth request fails."""
    pass


def _chunks(values: Sequence[str], size: int) -> List[List[str]]:
    return [list(values[i:i + size]) for i in range(0, len(values), size)]


class TwitchClient:
    """Synchronous client for the Helix endpoints the monitor needs.

    Reuses one httpx client for connection pooling and caches the app
    access token until shortly before it expires.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        http: Optional[httpx.Client] = None,
        timeout: float = 10.0,
    ) -> None:
        """Initialize the client.

        Args:
            client_id: Twitch application client id
            client_secret: Twitch application client secret
            http: Optional preconfigured httpx client (used by tests)
            timeout: Request timeout in seconds when creating the httpx client

        Raises:
            ValueError: If credentials are missing
        """
        if not client_id or not client_secret:
            raise ValueError("Twitch client_id and client_secret are required")

        self._client_id = client_id
        self._client_secret = client_secret
        self._http = http if http is not None else httpx.Client(timeout=timeout)

        self._app_token: Optional[str] = None
        self._app_token_expires_at = 0.0

    def close(self) -> None:
        """Close the shared HTTP client."""
        self._http.close()

    def fetch_users(self, names: Sequence[str]) -> List[Dict[str, Any]]:
        """Fetch user records by login name.

        Args:
            names: Channel login names

        Returns:
            List of Helix user objects

        Raises:
            TwitchApiError: If any request fails
        """
        users: List[Dict[str, Any]] = []
        for batch in _chunks(list(names), MAX_IDS_PER_REQUEST):
            users.extend(self._helix_get("/users", [("login", name) for name in batch]))
        return users

    def fetch_games(self, game_ids: Sequence[str]) -> List[Dict[str, Any]]:
        """Fetch game records by id.

        Args:
            game_ids: Helix game ids

        Returns:
            List of Helix game objects

        Raises:
            TwitchApiError: If any request fails
        """
        games: List[Dict[str, Any]] = []
        for batch in _chunks(list(game_ids), MAX_IDS_PER_REQUEST):
            games.extend(self._helix_get("/games", [("id", game_id) for game_id in batch]))
        return games

    def fetch_streams(self, names: Sequence[str]) -> List[Dict[str, Any]]:
        """Fetch current streams for the given channel login names.

        Follows pagination cursors within each batch of logins.

        Args:
            names: Channel login names

        Returns:
            List of Helix stream objects (only channels currently broadcasting)

        Raises:
            TwitchApiError: If any request fails
        """
        streams: List[Dict[str, Any]] = []
        for batch in _chunks(list(names), MAX_IDS_PER_REQUEST):
            cursor = None
            while True:
                params = [("user_login", name) for name in batch]
                params.append(("first", str(MAX_IDS_PER_REQUEST)))
                if cursor:
                    params.append(("after", cursor))

                payload = self._helix_request("/streams", params)
                streams.extend(payload.get("data", []))

                cursor = (payload.get("pagination") or {}).get("cursor")
                if not cursor or not payload.get("data"):
                    break
        return streams

    def _helix_get(self, path: str, params: List[tuple]) -> List[Dict[str, Any]]:
        return self._helix_request(path, params).get("data", [])

    def _helix_request(self, path: str, params: List[tuple]) -> Dict[str, Any]:
        """Issue an authenticated Helix GET and return the decoded body.

        A 401 drops the cached app token and retries once with a fresh one.

        Raises:
            TwitchApiError: On transport errors or non-2xx responses
        """
        for attempt in range(2):
            token = self._ensure_app_token()
            try:
                response = self._http.get(
                    f"{HELIX_BASE}{path}",
                    params=params,
                    headers={
                        "Authorization": f"Bearer {token}",
                        "Client-Id": self._client_id,
                    },
                )
            except httpx.HTTPError as e:
                raise TwitchApiError(f"Helix request {path} failed: {e}") from e

            if response.status_code == 401 and attempt == 0:
                logger.info("Helix rejected app token, requesting a new one")
                self._app_token = None
                continue

            if response.status_code != 200:
                raise TwitchApiError(
                    f"Helix request {path} returned HTTP {response.status_code}: "
                    f"{response.text[:200]}"
                )

            try:
                return response.json()
            except ValueError as e:
                raise TwitchApiError(f"Helix request {path} returned invalid JSON") from e

        raise TwitchApiError(f"Helix request {path} unauthorized after token refresh")

    def _ensure_app_token(self) -> str:
        """Return a cached app access token, refreshing only when expired.

        Raises:
            TwitchApiError: If the token request fails
        """
        now = time.monotonic()
        if self._app_token and now < self._app_token_expires_at:
            return self._app_token

        try:
            response = self._http.post(
                f"{OAUTH_BASE}/token",
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "grant_type": "client_credentials",
                },
            )
        except httpx.HTTPError as e:
            raise TwitchApiError(f"App token request failed: {e}") from e

        if response.status_code != 200:
            raise TwitchApiError(f"App token request returned HTTP {response.status_code}")

        data = response.json()
        token = data.get("access_token")
        if not token:
            raise TwitchApiError("App token response did not include an access_token")

        expires_in = data.get("expires_in", 0)
        self._app_token = token
        self._app_token_expires_at = now + max(expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0)
        logger.debug(f"Obtained Twitch app access token (expires in {expires_in}s)")
        return token


def build_twitch_client(config: Config) -> TwitchClient:
    """Construct a TwitchClient from configuration.

    Args:
        config: Configuration object containing Twitch credentials

    Returns:
        TwitchClient: Configured Helix client
    """
    return TwitchClient(config.twitch.client_id, config.twitch.client_secret)
