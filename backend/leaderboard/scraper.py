"""Fetching and parsing of the source leaderboard page.

The page carries a "Leaderboard last updated <when>" line which is used as an
opaque change fingerprint, and a ``table.tableDefault`` with one row per
player: rank, name, EV won, EV bb/100, won, hands. Daily change badges are
rendered as ``<sup>`` elements inside some cells and are dropped.
"""

import re
from dataclasses import dataclass
from http import HTTPStatus

import httpx
import structlog
from bs4 import BeautifulSoup, Tag
from pydantic import ValidationError

from leaderboard.models import MAX_HANDS, MAX_PLAYERS, PlayerStats

logger = structlog.get_logger()

DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
DEFAULT_FETCH_TIMEOUT_SECONDS = 10.0
DEFAULT_PROBE_TIMEOUT_SECONDS = 5.0

MIN_HTML_LENGTH = 100
MAX_STRING_LENGTH = 200
_MIN_CELLS = 6

_TIMESTAMP_PATTERN = re.compile(
    r"Leaderboard last updated\s+([A-Za-z]+\s+\d+,?\s+\d+:\d+\s+[A-Z]+)",
    re.IGNORECASE,
)
_UNSAFE_MARKUP = re.compile(r"[<>]")
_SCRIPT_PROTOCOL = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"on\w+=", re.IGNORECASE)
_NON_NUMERIC = re.compile(r"[^0-9.-]")
_LEADING_FLOAT = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")
_LEADING_INT = re.compile(r"-?\d+")


class ScrapeError(Exception):
    """The source page could not be fetched or did not look like the leaderboard."""


class NoDataError(ScrapeError):
    """The page was fetched but yielded zero valid player rows."""


@dataclass(frozen=True)
class ScrapeResult:
    players: list[PlayerStats]
    webpage_timestamp: str | None


def sanitize_string(value: str) -> str:
    value = _UNSAFE_MARKUP.sub("", value)
    value = _SCRIPT_PROTOCOL.sub("", value)
    value = _EVENT_HANDLER.sub("", value)
    return value.strip()[:MAX_STRING_LENGTH]


def sanitize_number(value: str, *, integer: bool = False) -> float | int:
    """Extract the leading number from display text such as ``$1,234.50``; 0 if none."""
    cleaned = _NON_NUMERIC.sub("", value)
    match = (_LEADING_INT if integer else _LEADING_FLOAT).match(cleaned)
    if match is None:
        return 0
    return int(match.group()) if integer else float(match.group())


def parse_webpage_timestamp(html: str) -> str | None:
    soup = BeautifulSoup(html, "html.parser")
    match = _TIMESTAMP_PATTERN.search(soup.get_text(" "))
    if match is None:
        return None
    return match.group(1).strip()


def _cell_text(cell: Tag, *, drop_superscript: bool = False) -> str:
    if drop_superscript:
        for sup in cell.find_all("sup"):
            sup.decompose()
    return cell.get_text().strip()


def parse_players(html: str) -> list[PlayerStats]:
    """Parse leaderboard rows into validated stats, assigning dense 1-based ranks.

    Rows with fewer than six cells, an empty name, an out-of-range hand count,
    a name already seen or any other validation failure are skipped. Accepted
    rows beyond ``MAX_PLAYERS`` are dropped with a warning.
    """
    soup = BeautifulSoup(html, "html.parser")
    players: list[PlayerStats] = []
    seen: set[str] = set()

    rows = soup.select("table.tableDefault tbody tr")
    for row_number, row in enumerate(rows, start=1):
        if len(players) == MAX_PLAYERS:
            logger.warning(
                "player limit reached, dropping remaining rows",
                limit=MAX_PLAYERS,
                dropped=len(rows) - row_number + 1,
            )
            break

        cells = row.find_all("td")
        if len(cells) < _MIN_CELLS:
            continue

        name = sanitize_string(_cell_text(cells[1]))
        if not name:
            continue
        if name in seen:
            logger.warning("skipping duplicate player row", row=row_number, name=name)
            continue

        hands = sanitize_number(_cell_text(cells[5], drop_superscript=True), integer=True)
        if not 0 <= hands <= MAX_HANDS:
            logger.warning("skipping row with invalid hand count", row=row_number, hands=hands)
            continue

        try:
            player = PlayerStats(
                rank=len(players) + 1,
                name=name,
                ev_won=sanitize_number(_cell_text(cells[2], drop_superscript=True)),
                ev_bb100=sanitize_number(_cell_text(cells[3])),
                won=sanitize_number(_cell_text(cells[4])),
                hands=hands,
            )
        except ValidationError as e:
            logger.warning("skipping invalid player row", row=row_number, errors=e.errors(include_url=False, include_context=False))
            continue
        players.append(player)
        seen.add(player.name)

    return players


class LeaderboardScraper:
    """Fetches the source page with explicit timeouts.

    ``fetch_leaderboard`` pulls and parses the whole table. ``probe_timestamp``
    is the cheap freshness check: a short-timeout fetch that only extracts the
    fingerprint and reports any failure as None.
    """

    def __init__(
        self,
        source_url: str,
        user_agent: str = DEFAULT_USER_AGENT,
        fetch_timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._source_url = source_url
        self._user_agent = user_agent
        self._fetch_timeout = fetch_timeout
        self._probe_timeout = probe_timeout
        self._transport = transport

    async def _get(self, timeout: float) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=timeout,
            transport=self._transport,
            follow_redirects=True,
            headers={"user-agent": self._user_agent},
        ) as client:
            return await client.get(self._source_url, headers={"cache-control": "no-cache"})

    async def fetch_leaderboard(self) -> ScrapeResult:
        try:
            response = await self._get(self._fetch_timeout)
        except httpx.TimeoutException as e:
            raise ScrapeError(f"Timed out after {self._fetch_timeout}s fetching leaderboard") from e
        except httpx.HTTPError as e:
            raise ScrapeError(f"Failed to fetch leaderboard: {e}") from e

        if response.status_code != HTTPStatus.OK:
            raise ScrapeError(f"HTTP error from leaderboard source: {response.status_code}")

        html = response.text
        if len(html) < MIN_HTML_LENGTH:
            raise ScrapeError("Invalid response from external source")

        players = parse_players(html)
        if not players:
            raise NoDataError("No player data found in response")

        webpage_timestamp = parse_webpage_timestamp(html)
        logger.info("leaderboard scraped", players=len(players), webpage_timestamp=webpage_timestamp)
        return ScrapeResult(players=players, webpage_timestamp=webpage_timestamp)

    async def probe_timestamp(self) -> str | None:
        try:
            response = await self._get(self._probe_timeout)
        except httpx.HTTPError as e:
            logger.warning("fingerprint probe failed", error=str(e) or type(e).__name__)
            return None

        if response.status_code != HTTPStatus.OK:
            logger.warning("fingerprint probe got non-200 response", status=response.status_code)
            return None
        return parse_webpage_timestamp(response.text)
