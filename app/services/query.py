"""Filter, search, sort and paginate stages applied to item listings."""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Sequence

from ..models import BaseItem, ItemsResponse

logger = logging.getLogger(__name__)

SUPPORTED_ITEM_TYPES: dict[str, str] = {"movie": "Movie", "series": "Series"}
DESCENDING = "Descending"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _split_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _parse_int(value: str | None, name: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        logger.debug("Ignoring malformed %s=%r", name, value)
        return None


@dataclass(slots=True)
class QueryParams:
    """Client supplied listing parameters, already case-folded by name."""

    parent_id: str | None = None
    search_term: str | None = None
    include_item_types: str | None = None
    years: str | None = None
    sort_by: str | None = None
    sort_order: str | None = None
    start_index: str | None = None
    limit: str | None = None
    season_id: str | None = None

    @classmethod
    def from_mapping(cls, params: Mapping[str, str]) -> "QueryParams":
        """Build from a mapping whose keys are matched case-insensitively."""

        lowered = {key.lower(): value for key, value in params.items()}
        return cls(
            parent_id=lowered.get("parentid") or None,
            search_term=lowered.get("searchterm") or None,
            include_item_types=lowered.get("includeitemtypes") or None,
            years=lowered.get("years") or None,
            sort_by=lowered.get("sortby") or None,
            sort_order=lowered.get("sortorder") or None,
            start_index=lowered.get("startindex") or None,
            limit=lowered.get("limit") or None,
            season_id=lowered.get("seasonid") or None,
        )


def filter_records(records: Iterable[BaseItem], params: QueryParams) -> list[BaseItem]:
    """Keep records matching every supplied filter kind.

    Values inside one filter are alternatives. Type names other than the two
    supported kinds never match anything.
    """

    result = list(records)

    requested_types = _split_list(params.include_item_types)
    if requested_types:
        allowed = {
            SUPPORTED_ITEM_TYPES[name.lower()]
            for name in requested_types
            if name.lower() in SUPPORTED_ITEM_TYPES
        }
        result = [record for record in result if record.type in allowed]

    requested_years = _split_list(params.years)
    if requested_years:
        years: set[int] = set()
        for raw in requested_years:
            year = _parse_int(raw, "years")
            if year is not None:
                years.add(year)
        result = [record for record in result if record.production_year in years]

    return result


def search_records(records: Iterable[BaseItem], term: str | None) -> list[BaseItem]:
    if not term:
        return list(records)
    needle = term.casefold()
    return [record for record in records if needle in record.name.casefold()]


def _sort_name(record: BaseItem) -> str:
    return record.sort_name or record.name


SORT_KEYS: dict[str, Callable[[BaseItem], Any]] = {
    "default": _sort_name,
    "sortname": _sort_name,
    "seriessortname": _sort_name,
    "productionyear": lambda record: record.production_year or 0,
    "criticrating": lambda record: record.critic_rating or 0.0,
}


def sort_records(
    records: Sequence[BaseItem], sort_by: str | None, sort_order: str | None
) -> list[BaseItem]:
    """Stable multi-key sort; the first differing key decides."""

    if not sort_by:
        return list(records)

    keys: list[Callable[[BaseItem], Any]] = []
    for name in _split_list(sort_by):
        key = SORT_KEYS.get(name.lower())
        if key is None:
            logger.info("Ignoring unsupported sort key %r", name)
            continue
        keys.append(key)
    if not keys:
        return list(records)

    descending = sort_order == DESCENDING

    def compare(left: BaseItem, right: BaseItem) -> int:
        for key in keys:
            a, b = key(left), key(right)
            if a == b:
                continue
            outcome = -1 if a < b else 1
            return -outcome if descending else outcome
        return 0

    return sorted(records, key=functools.cmp_to_key(compare))


def paginate(
    records: Sequence[BaseItem], start_index: str | None, limit: str | None
) -> tuple[list[BaseItem], int]:
    """Slice a page, returning it with the start index actually applied."""

    page = list(records)
    applied_start = 0
    start = _parse_int(start_index, "startIndex")
    if start is not None and 0 <= start < len(page):
        page = page[start:]
        applied_start = start
    count = _parse_int(limit, "limit")
    if count is not None and 0 < count < len(page):
        page = page[:count]
    return page, applied_start


def run_query(records: Iterable[BaseItem], params: QueryParams) -> ItemsResponse:
    """Full listing pipeline producing the response envelope."""

    candidates = filter_records(records, params)
    candidates = search_records(candidates, params.search_term)
    total = len(candidates)
    ordered = sort_records(candidates, params.sort_by, params.sort_order)
    page, start = paginate(ordered, params.start_index, params.limit)
    return ItemsResponse(items=page, total_record_count=total, start_index=start)


def latest(records: Iterable[BaseItem], params: QueryParams) -> list[BaseItem]:
    """Most recently premiered records first; the sort parameters are ignored."""

    candidates = filter_records(records, params)
    ordered = sorted(
        candidates,
        key=lambda record: record.premiere_date or _EPOCH,
        reverse=True,
    )
    page, _ = paginate(ordered, params.start_index, params.limit)
    return page
