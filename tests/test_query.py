from datetime import datetime, timedelta, timezone

from app.models import BaseItem
from app.services.query import (
    QueryParams,
    filter_records,
    latest,
    paginate,
    run_query,
    search_records,
    sort_records,
)

BASE_DATE = datetime(2020, 1, 1, tzinfo=timezone.utc)


def _record(record_id, name, *, year=None, type_="Movie", sort_name=None, rating=None, days=0):
    return BaseItem(
        id=record_id,
        name=name,
        server_id="s",
        etag=record_id,
        type=type_,
        production_year=year,
        sort_name=sort_name,
        critic_rating=rating,
        premiere_date=BASE_DATE + timedelta(days=days),
    )


def _ids(records):
    return [record.id for record in records]


def test_from_mapping_is_case_insensitive():
    params = QueryParams.from_mapping(
        {"ParentId": "collection_1", "sortby": "SortName", "SORTORDER": "Descending", "Limit": "5"}
    )

    assert params.parent_id == "collection_1"
    assert params.sort_by == "SortName"
    assert params.sort_order == "Descending"
    assert params.limit == "5"
    assert params.start_index is None


def test_name_ties_are_broken_by_year():
    a = _record("A", "Alpha", year=2000)
    b = _record("B", "Alpha", year=1999)

    ordered = sort_records([a, b], "sortName,productionYear", "Ascending")

    assert _ids(ordered) == ["B", "A"]


def test_descending_applies_to_every_key():
    records = [
        _record("1", "Beta", year=2001),
        _record("2", "Alpha", year=1999),
        _record("3", "Alpha", year=2005),
    ]

    ordered = sort_records(records, "SortName,ProductionYear", "Descending")

    assert _ids(ordered) == ["1", "3", "2"]


def test_sort_name_falls_back_to_name():
    records = [_record("1", "Zulu", sort_name="aaa"), _record("2", "Mike")]

    assert _ids(sort_records(records, "SortName", None)) == ["1", "2"]


def test_sort_is_stable_and_skips_unknown_keys():
    records = [_record(str(index), "Same", year=2000) for index in range(5)]

    ordered = sort_records(records, "Random,ProductionYear", "Descending")

    assert _ids(ordered) == ["0", "1", "2", "3", "4"]


def test_absent_sort_keeps_scan_order():
    records = [_record("2", "B"), _record("1", "A")]

    assert _ids(sort_records(records, None, "Descending")) == ["2", "1"]


def test_critic_rating_sort():
    records = [_record("low", "x", rating=5.0), _record("high", "y", rating=9.0)]

    assert _ids(sort_records(records, "CriticRating", "Descending")) == ["high", "low"]


def test_pagination_slice_and_total():
    records = [_record(str(index), f"Item {index}") for index in range(10)]

    response = run_query(records, QueryParams(start_index="5", limit="3"))

    assert _ids(response.items) == ["5", "6", "7"]
    assert response.total_record_count == 10
    assert response.start_index == 5


def test_pagination_ignores_out_of_range_and_malformed_values():
    records = [_record(str(index), "x") for index in range(4)]

    assert _ids(paginate(records, "10", "2")[0]) == ["0", "1"]
    assert _ids(paginate(records, "-1", None)[0]) == ["0", "1", "2", "3"]
    assert _ids(paginate(records, "abc", "zz")[0]) == ["0", "1", "2", "3"]
    assert _ids(paginate(records, "1", "3")[0]) == ["1", "2", "3"]
    assert _ids(paginate(records, None, "0")[0]) == ["0", "1", "2", "3"]
    assert paginate(records, "10", None)[1] == 0


def test_type_filter_only_matches_supported_kinds():
    records = [
        _record("m", "Movie", type_="Movie"),
        _record("s", "Show", type_="Series"),
        _record("e", "Episode", type_="Episode"),
    ]

    assert _ids(filter_records(records, QueryParams(include_item_types="Movie,Series"))) == [
        "m",
        "s",
    ]
    assert _ids(filter_records(records, QueryParams(include_item_types="series"))) == ["s"]
    assert filter_records(records, QueryParams(include_item_types="Episode")) == []


def test_year_filter_is_an_or_within_the_list():
    records = [
        _record("1999", "a", year=1999),
        _record("2000", "b", year=2000),
        _record("2001", "c", year=2001),
    ]

    filtered = filter_records(records, QueryParams(years="1999,2001,bogus"))

    assert _ids(filtered) == ["1999", "2001"]


def test_filters_compose_with_and():
    records = [
        _record("m1999", "a", year=1999),
        _record("s1999", "b", year=1999, type_="Series"),
        _record("m2000", "c", year=2000),
    ]

    filtered = filter_records(records, QueryParams(include_item_types="Movie", years="1999"))

    assert _ids(filtered) == ["m1999"]


def test_search_is_case_insensitive_substring():
    records = [_record("1", "The Matrix"), _record("2", "Heat")]

    assert _ids(search_records(records, "MAT")) == ["1"]
    assert _ids(search_records(records, None)) == ["1", "2"]


def test_total_counts_filtered_records():
    records = [_record(str(index), "Match" if index % 2 else "Other") for index in range(6)]

    response = run_query(records, QueryParams(search_term="match", limit="1"))

    assert response.total_record_count == 3
    assert _ids(response.items) == ["1"]


def test_latest_orders_by_premiere_date_and_ignores_sort_params():
    records = [
        _record("old", "a", days=1),
        _record("new", "b", days=30),
        _record("mid", "c", days=10),
    ]

    result = latest(records, QueryParams(sort_by="SortName", limit="2"))

    assert _ids(result) == ["new", "mid"]
