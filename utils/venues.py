"""Per-venue strategies: ticker normalization, native date parsing, search URLs.

Adding a venue means adding a `Venue` row to `VENUES`; nothing else branches
on venue codes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable
from urllib.parse import urlencode


@dataclass(frozen=True)
class Venue:
    code: str
    suffixes: tuple[str, ...] = ()
    # Zero-pad purely numeric codes to this width (None: leave as-is).
    code_width: int | None = None
    tz: timezone = timezone.utc
    date_formats: tuple[str, ...] = ("%Y-%m-%d",)
    # Filings index origin, used to resolve relative document links.
    index_origin: str | None = None
    search_url: Callable[[str], str] | None = field(default=None, compare=False)
    source_tag: str | None = None
    # Requests per hour the filings index tolerates from one client.
    index_hourly_budget: int = 100

    @property
    def supports_discovery(self) -> bool:
        return self.search_url is not None and self.index_origin is not None


def _hkex_search_url(exchange_code: str) -> str:
    # The title search accepts the code without leading zeros as well, but the
    # padded form is what the site itself submits.
    params = {"lang": "en", "stock": exchange_code}
    return f"https://www1.hkexnews.hk/search/titlesearch.xhtml?{urlencode(params)}"


_HKT = timezone(timedelta(hours=8), "HKT")
_CST = timezone(timedelta(hours=8), "CST")
_JST = timezone(timedelta(hours=9), "JST")
_KST = timezone(timedelta(hours=9), "KST")
_SGT = timezone(timedelta(hours=8), "SGT")
_ICT = timezone(timedelta(hours=7), "ICT")

_COMMON_FORMATS = ("%Y-%m-%d", "%d %b %Y", "%d %B %Y")

VENUES: dict[str, Venue] = {
    "HKEX": Venue(
        code="HKEX",
        suffixes=(".HK",),
        code_width=5,
        tz=_HKT,
        date_formats=("%d/%m/%Y %H:%M", "%d/%m/%Y") + _COMMON_FORMATS,
        index_origin="https://www1.hkexnews.hk",
        search_url=_hkex_search_url,
        source_tag="HKEX",
        index_hourly_budget=100,
    ),
    "SZSE": Venue("SZSE", (".SZ",), 6, _CST, ("%Y-%m-%d %H:%M",) + _COMMON_FORMATS),
    "SSE": Venue("SSE", (".SS", ".SH"), 6, _CST, ("%Y-%m-%d %H:%M",) + _COMMON_FORMATS),
    "TSE": Venue("TSE", (".T",), 4, _JST, ("%Y/%m/%d",) + _COMMON_FORMATS),
    "KRX": Venue("KRX", (".KS", ".KQ"), 6, _KST, ("%Y.%m.%d",) + _COMMON_FORMATS),
    "SGX": Venue("SGX", (".SI",), None, _SGT, _COMMON_FORMATS),
    "SET": Venue("SET", (".BK",), None, _ICT, ("%d/%m/%Y",) + _COMMON_FORMATS),
    "NASDAQ": Venue("NASDAQ", (), None, timezone.utc, ("%m/%d/%Y",) + _COMMON_FORMATS),
    "NYSE": Venue("NYSE", (), None, timezone.utc, ("%m/%d/%Y",) + _COMMON_FORMATS),
}


def get_venue(code: str) -> Venue:
    """Look up a venue by code (case-insensitive). Raises ValueError if unknown."""

    key = (code or "").strip().upper()
    venue = VENUES.get(key)
    if venue is None:
        raise ValueError(f"unknown listing venue: {code!r}")
    return venue


def normalize_exchange_code(ticker: str, venue_code: str) -> str:
    """Normalize a ticker to its venue-local exchange code.

    "1357.HK" -> "01357" (HKEX), "300058.sz" -> "300058", " ncty " -> "NCTY".
    """

    venue = get_venue(venue_code)
    raw = (ticker or "").strip().upper()
    for suffix in venue.suffixes:
        if raw.endswith(suffix):
            raw = raw[: -len(suffix)]
            break
    raw = raw.strip()
    if not raw:
        raise ValueError(f"empty ticker: {ticker!r}")
    if raw.isdigit() and venue.code_width:
        if len(raw.lstrip("0")) > venue.code_width:
            raise ValueError(f"ticker {ticker!r} too long for {venue.code}")
        return raw.lstrip("0").zfill(venue.code_width)
    return raw


_DATE_PATTERNS = (
    re.compile(r"\d{1,2}/\d{1,2}/\d{4}(?:\s+\d{1,2}:\d{2})?"),
    re.compile(r"\d{4}[-/.]\d{1,2}[-/.]\d{1,2}(?:\s+\d{1,2}:\d{2})?"),
    re.compile(
        r"\d{1,2}\s+(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\s+\d{4}",
        re.IGNORECASE,
    ),
)


def parse_venue_date(text: str, venue_code: str) -> datetime | None:
    """Parse a date cell in the venue's native format into an aware UTC datetime.

    Returns None if nothing parseable is found; the caller picks a fallback.
    """

    venue = get_venue(venue_code)
    cell = " ".join((text or "").split())
    if not cell:
        return None

    for pattern in _DATE_PATTERNS:
        m = pattern.search(cell)
        if not m:
            continue
        token = m.group(0)
        # Retry without the time part when the venue only lists date formats.
        for candidate in dict.fromkeys((token, token.split(" ")[0])):
            for fmt in venue.date_formats:
                try:
                    parsed = datetime.strptime(candidate, fmt)
                except ValueError:
                    continue
                return parsed.replace(tzinfo=venue.tz).astimezone(timezone.utc)
    return None
