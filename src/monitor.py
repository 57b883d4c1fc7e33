"""Stream monitor module: the refresh reconciliation engine.

Polls Helix for users, games and streams, keeps an online set per channel
with hysteresis, and notifies subscribers of online/offline transitions.

Refresh ordering:
    users -> games -> streams. A stream refresh never runs while a user or
    game refresh is pending, because stream records are interpreted against
    the locally cached user and game records.

Offline hysteresis:
    A channel that drops out of the live list is kept in the online set
    (with its last known StreamState) until it has been missing for
    OFFLINE_TIMEOUT_CYCLES consecutive stream refreshes. During that grace
    window its StreamState is not re-fetched.
"""

import copy
import logging
import sqlite3
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from channel_source import ChannelSource
from config import Config, effective_poll_interval_ms
from record_cache import RecordCache
from scheduler import Scheduler


logger = logging.getLogger(__name__)

OFFLINE_TIMEOUT_CYCLES = 5
USER_REFRESH_INTERVAL_SECONDS = 600

LIVE_STREAM_TYPE = "live"
OFFLINE_STREAM_TYPE = "detected_offline"

USER_CACHE_NAMESPACE = "twitch-users-v2"
GAME_CACHE_NAMESPACE = "twitch-games"

LiveUpdateHandler = Callable[[Dict[str, Any], bool, Optional[List[Dict[str, Any]]]], Any]
OfflineHandler = Callable[[Dict[str, Any]], Any]


def merge_records(store: Dict[str, Dict[str, Any]], records: List[Dict[str, Any]]) -> List[str]:
    """Merge-upsert records into store, keyed by their "id" field.

    Fetched fields win over stored fields; stored-only fields are kept.
    Records are never removed.

    Args:
        store: Mapping of record id to record, updated in place
        records: Freshly fetched records

    Returns:
        List of ids that were merged, in input order
    """
    merged_ids = []
    for record in records:
        record_id = record.get("id")
        if record_id is None:
            logger.debug(f"Skipping record without id: {record}")
            continue
        record_id = str(record_id)
        previous = store.get(record_id) or {}
        store[record_id] = {**previous, **record}
        merged_ids.append(record_id)
    return merged_ids


def stream_channel_name(stream: Dict[str, Any]) -> str:
    """Return the lowercased channel name a stream payload belongs to."""
    return str(stream.get("user_login") or stream.get("user_name") or "").lower()


class StreamMonitor:
    """Reconciliation engine for Twitch channel online/offline state.

    All state mutation happens under a single RLock. Helix fetches run
    outside the lock, so concurrent refresh() calls are gated by the
    pending-refresh flags rather than serialized end to end.
    """

    def __init__(
        self,
        config: Config,
        client: Any,
        channel_source: ChannelSource,
        user_cache: RecordCache,
        game_cache: RecordCache,
    ) -> None:
        """Initialize the monitor and load cached users and games.

        Args:
            config: Configuration object
            client: Platform client with fetch_users/fetch_games/fetch_streams
            channel_source: Resolver for the monitored channel names
            user_cache: Persistent cache for user records
            game_cache: Persistent cache for game records
        """
        self._config = config
        self._client = client
        self._channel_source = channel_source
        self._user_cache = user_cache
        self._game_cache = game_cache
        self._lock = threading.RLock()

        self._last_user_refresh: Optional[float] = user_cache.get("last-update")
        self._pending_user_refresh = False
        self._user_data: Dict[str, Dict[str, Any]] = user_cache.get("user-list", {})

        self._last_game_refresh: Optional[float] = game_cache.get("last-update")
        self._pending_game_refresh = False
        self._game_data: Dict[str, Dict[str, Any]] = game_cache.get("game-list", {})
        self._watching_game_ids: List[str] = []

        self._active_streams: List[str] = []
        self._stream_data: Dict[str, Dict[str, Any]] = {}

        self._live_callbacks: List[LiveUpdateHandler] = []
        self._offline_callbacks: List[OfflineHandler] = []

        self.channel_names: List[str] = []
        self._scheduler: Optional[Scheduler] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Resolve channels and start periodic polling."""
        channel_names = self._channel_source.resolve()
        with self._lock:
            self.channel_names = channel_names

        interval_ms = effective_poll_interval_ms(self._config.twitch.check_interval_ms)
        self._scheduler = Scheduler(self.refresh, (interval_ms + 1000) / 1000.0)
        self._scheduler.start()

        logger.info(
            f"Configured stream status polling for {len(channel_names)} channels: "
            f"{', '.join(channel_names)} ({interval_ms}ms interval)"
        )

    def stop(self) -> None:
        """Stop periodic polling."""
        if self._scheduler is not None:
            self._scheduler.stop()
            self._scheduler = None

    def close(self) -> None:
        """Stop polling and release the platform client."""
        self.stop()
        close_client = getattr(self._client, "close", None)
        if close_client is not None:
            close_client()

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def on_channel_live_update(self, handler: LiveUpdateHandler) -> None:
        """Register a handler called as handler(stream_state, is_online, channels).

        Only an explicit False return vetoes the transition. Other falsy
        values such as None, 0 or "" do not. A handler that raises is
        logged and counted as a veto.
        """
        with self._lock:
            self._live_callbacks.append(handler)

    def on_channel_offline(self, handler: OfflineHandler) -> None:
        """Register a handler called as handler(stream_state) on the falling edge."""
        with self._lock:
            self._offline_callbacks.append(handler)

    # ------------------------------------------------------------------
    # Read-only snapshots
    # ------------------------------------------------------------------

    @property
    def active_streams(self) -> List[str]:
        with self._lock:
            return list(self._active_streams)

    @property
    def watching_game_ids(self) -> List[str]:
        with self._lock:
            return list(self._watching_game_ids)

    @property
    def pending_user_refresh(self) -> bool:
        with self._lock:
            return self._pending_user_refresh

    @property
    def pending_game_refresh(self) -> bool:
        with self._lock:
            return self._pending_game_refresh

    def get_stream_state(self, channel_name: str) -> Optional[Dict[str, Any]]:
        """Get a copy of the StreamState for a channel, or None if never seen."""
        with self._lock:
            state = self._stream_data.get(channel_name.lower())
            return copy.deepcopy(state) if state is not None else None

    def get_user_record(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._user_data.get(str(user_id))
            return copy.deepcopy(record) if record is not None else None

    def get_game_record(self, game_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._game_data.get(str(game_id))
            return copy.deepcopy(record) if record is not None else None

    # ------------------------------------------------------------------
    # Refresh orchestration
    # ------------------------------------------------------------------

    def refresh(self, reason: Optional[str] = None) -> None:
        """Run refresh passes until no pass requests another.

        Args:
            reason: Why the refresh was triggered, for logging
        """
        next_reason: Optional[str] = reason or "No reason"
        while next_reason is not None:
            logger.info(f"Refreshing now ({next_reason})")
            next_reason = self._refresh_pass()

    def _user_refresh_due(self, now: float) -> bool:
        if self._last_user_refresh is None:
            return True
        return now - self._last_user_refresh >= USER_REFRESH_INTERVAL_SECONDS

    def _refresh_pass(self) -> Optional[str]:
        """Run one users/games/streams pass.

        Returns:
            The reason for another pass, or None at the fixed point
        """
        with self._lock:
            user_due = self._user_refresh_due(time.time())
            if user_due:
                self._pending_user_refresh = True
            game_due = self._pending_game_refresh
            game_ids = list(self._watching_game_ids)

        next_reason = None

        if user_due and self._refresh_users():
            next_reason = "Got Twitch users, need to get streams"

        if game_due:
            self._refresh_games(game_ids)

        with self._lock:
            streams_allowed = (
                not user_due
                and not game_due
                and not self._pending_user_refresh
                and not self._pending_game_refresh
            )

        if streams_allowed and self._refresh_streams():
            next_reason = "Need to request game data"

        return next_reason

    def _refresh_users(self) -> bool:
        """Re-resolve channels and refresh user records.

        Returns:
            True if users were refreshed and this call cleared the pending
            flag, meaning dependent stream data should be fetched next
        """
        channel_names = self._channel_source.resolve()
        with self._lock:
            self.channel_names = channel_names

        try:
            users = self._client.fetch_users(channel_names)
        except Exception as e:
            logger.warning(f"Error in users refresh: {e}")
            with self._lock:
                self._pending_user_refresh = False
            return False

        with self._lock:
            self.handle_user_list(users)
            if self._pending_user_refresh:
                self._pending_user_refresh = False
                return True
            return False

    def _refresh_games(self, game_ids: List[str]) -> None:
        try:
            games = self._client.fetch_games(game_ids)
        except Exception as e:
            logger.warning(f"Error in games refresh: {e}")
        else:
            with self._lock:
                self.handle_game_list(games)
        finally:
            with self._lock:
                self._pending_game_refresh = False

    def _refresh_streams(self) -> bool:
        """Fetch streams and reconcile them.

        Returns:
            True if reconciliation requested a game refresh
        """
        with self._lock:
            if not self.channel_names:
                self.channel_names = self._channel_source.resolve()
            channel_names = list(self.channel_names)

        try:
            streams = self._client.fetch_streams(channel_names)
        except Exception as e:
            logger.warning(f"Error in streams refresh: {e}")
            return False

        with self._lock:
            return self.handle_stream_list(streams)

    # ------------------------------------------------------------------
    # Record handling
    # ------------------------------------------------------------------

    def handle_user_list(self, users: List[Dict[str, Any]]) -> None:
        """Merge fetched users into the store and persist them."""
        with self._lock:
            merge_records(self._user_data, users)

            names_seen = [user.get("display_name") or user.get("login", "") for user in users]
            if names_seen:
                logger.debug(f"Updated user info: {', '.join(names_seen)}")

            self._last_user_refresh = time.time()
            self._persist(
                self._user_cache,
                {"last-update": self._last_user_refresh, "user-list": self._user_data},
            )

    def handle_game_list(self, games: List[Dict[str, Any]]) -> None:
        """Merge fetched games into the store and persist them."""
        with self._lock:
            merge_records(self._game_data, games)

            game_names = [f"{game.get('id')} → {game.get('name')}" for game in games]
            if game_names:
                logger.debug(f"Updated game info: {', '.join(game_names)}")

            self._last_game_refresh = time.time()
            self._persist(
                self._game_cache,
                {"last-update": self._last_game_refresh, "game-list": self._game_data},
            )

    def _persist(self, cache: RecordCache, values: Dict[str, Any]) -> None:
        try:
            cache.put_many(values)
        except sqlite3.Error as e:
            logger.warning(f"Failed to persist cache namespace {cache.namespace}: {e}")

    # ------------------------------------------------------------------
    # Stream reconciliation
    # ------------------------------------------------------------------

    def handle_stream_list(self, streams: List[Dict[str, Any]]) -> bool:
        """Reconcile a fresh stream list against the committed online set.

        Args:
            streams: Helix stream payloads for the monitored channels

        Returns:
            True if the watched game ids changed and a game refresh is needed
        """
        with self._lock:
            next_online: List[str] = []
            next_game_ids: List[str] = []

            for stream in streams:
                channel_name = stream_channel_name(stream)
                if not channel_name:
                    continue

                if stream.get("type") == LIVE_STREAM_TYPE:
                    next_online.append(channel_name)

                user = self._user_data.get(str(stream.get("user_id"))) or {}
                previous = self._stream_data.get(channel_name) or {}
                game_id = stream.get("game_id")

                state = {**user, **previous, **stream}
                state["game"] = (game_id and self._game_data.get(str(game_id))) or None
                state["user"] = user
                self._stream_data[channel_name] = state

                if game_id and str(game_id) not in next_game_ids:
                    next_game_ids.append(str(game_id))

            notify_failed = False
            went_offline: List[str] = []

            # Rising edges
            for channel_name in list(next_online):
                if channel_name in self._active_streams:
                    continue
                logger.info(f"Stream channel has gone online: {channel_name}")
                if not self.notify_live_update(self._stream_data[channel_name], True):
                    notify_failed = True

            # Falling edges, with hysteresis
            for channel_name in self._active_streams:
                state = self._stream_data.setdefault(channel_name, {})

                if channel_name in next_online:
                    state["timeout"] = 0
                    continue

                state["timeout"] = state.get("timeout", 0) + 1
                logger.info(
                    f"Stream channel timeout, probably offline: {channel_name} "
                    f"({state['timeout']}/{OFFLINE_TIMEOUT_CYCLES})"
                )

                if state["timeout"] >= OFFLINE_TIMEOUT_CYCLES:
                    logger.info(f"Stream channel has gone offline: {channel_name}")
                    state["type"] = OFFLINE_STREAM_TYPE
                    state["timeout"] = 0
                    went_offline.append(channel_name)
                    self.notify_live_update(state, False)
                    self.notify_offline(state)
                else:
                    next_online.append(channel_name)

            if not notify_failed:
                self._active_streams = next_online
            else:
                # Committed falling edges leave the online set regardless.
                self._active_streams = [
                    name for name in self._active_streams if name not in went_offline
                ]
                logger.info("Could not notify channel, will try again next update.")

            if set(next_game_ids) != set(self._watching_game_ids):
                self._watching_game_ids = next_game_ids
                self._pending_game_refresh = True
                return True

            return False

    # ------------------------------------------------------------------
    # Notification
    # ------------------------------------------------------------------

    def notify_live_update(self, state: Dict[str, Any], is_online: bool) -> bool:
        """Dispatch a live update to every live-update handler.

        Every handler runs even if an earlier one vetoes.

        Returns:
            False if any handler returned False or raised
        """
        channels = self._channel_source.channels
        ok = True
        for handler in list(self._live_callbacks):
            if not self._dispatch(handler, state, is_online, channels):
                ok = False
        return ok

    def notify_offline(self, state: Dict[str, Any]) -> bool:
        """Dispatch the terminal offline notification to every offline handler.

        Returns:
            False if any handler returned False or raised
        """
        ok = True
        for handler in list(self._offline_callbacks):
            if not self._dispatch(handler, state):
                ok = False
        return ok

    def _dispatch(self, handler: Callable[..., Any], *args: Any) -> bool:
        try:
            result = handler(*args)
        except Exception:
            logger.exception(f"Notification handler {handler!r} raised, treating as veto")
            return False
        return result is not False
