"""Channel list resolution module.

Resolves the channel names to monitor from the static config list or,
when none is configured, from a Google Sheets CSV export.
"""

import csv
import io
import logging
from typing import Any, Dict, List, Optional

import httpx

from config import Config, SpreadsheetConfig


logger = logging.getLogger(__name__)

SHEETS_BASE = "https://docs.google.com/spreadsheets/d"


class ChannelSourceError(Exception):
    """Raised when the channel spreadsheet cannot be fetched or parsed."""
    pass


def sheet_export_url(descriptor: SpreadsheetConfig) -> str:
    """Build the CSV export URL for a spreadsheet descriptor."""
    url = f"{SHEETS_BASE}/{descriptor.spreadsheet_id}/gviz/tq?tqx=out:csv"
    if descriptor.sheet:
        url += f"&sheet={descriptor.sheet}"
    return url


def fetch_sheet_rows(
    descriptor: SpreadsheetConfig, http: Optional[httpx.Client] = None
) -> List[Dict[str, Any]]:
    """Download a spreadsheet and return its rows keyed by header.

    Args:
        descriptor: Spreadsheet configuration
        http: Optional httpx client to issue the request with

    Returns:
        List of dicts mapping column header to cell text

    Raises:
        ChannelSourceError: If the download or CSV parsing fails
    """
    url = sheet_export_url(descriptor)
    try:
        if http is not None:
            response = http.get(url, follow_redirects=True)
        else:
            response = httpx.get(url, follow_redirects=True, timeout=10.0)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise ChannelSourceError(f"Failed to fetch channel spreadsheet: {e}") from e

    try:
        reader = csv.DictReader(io.StringIO(response.text))
        return [dict(row) for row in reader]
    except csv.Error as e:
        raise ChannelSourceError(f"Failed to parse channel spreadsheet: {e}") from e


def normalize_channel_name(value: str) -> str:
    """Lowercase a channel name and drop line terminators."""
    return value.lower().replace("\r\n", "").replace("\r", "").replace("\n", "").strip()


class ChannelSource:
    """Resolves and caches the list of channel names to monitor.

    A failed or empty spreadsheet fetch keeps the previously resolved list
    so a flaky sheet never stops monitoring.
    """

    def __init__(self, config: Config, http: Optional[httpx.Client] = None) -> None:
        """Initialize the channel source.

        Args:
            config: Configuration object
            http: Optional httpx client for spreadsheet requests
        """
        self._static_channels = list(config.twitch.channels)
        self._spreadsheet = config.google_spreadsheet
        self._http = http

        self.channel_names: List[str] = []
        self.channels: Optional[List[Dict[str, Any]]] = None

    def resolve(self) -> List[str]:
        """Resolve the current channel names.

        Returns:
            List of lowercased channel names
        """
        if self._static_channels:
            self.channel_names = [name.lower() for name in self._static_channels]
            return list(self.channel_names)

        if self._spreadsheet is None:
            logger.warning("No channels configured")
            return list(self.channel_names)

        try:
            rows = fetch_sheet_rows(self._spreadsheet, self._http)
        except ChannelSourceError as e:
            logger.warning(f"Could not refresh channel list, keeping previous list: {e}")
            return list(self.channel_names)

        column = self._spreadsheet.headers[0]
        names = []
        for row in rows:
            value = row.get(column) if row else None
            if value:
                name = normalize_channel_name(value)
                if name:
                    names.append(name)

        if not names:
            logger.warning("No channels configured")
            return list(self.channel_names)

        self.channels = rows
        self.channel_names = names
        logger.debug(f"Resolved {len(names)} channel(s) from spreadsheet")
        return list(self.channel_names)
