from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path

import pytest

from app.catalog import Actor, Descriptor, Episode, Item, Library
from app.models import BaseItem
from app.services.enricher import MetadataEnricher, normalize_genres, parse_date

from conftest import ALPHA_NFO

FIRST_SEEN = datetime(2020, 1, 1, tzinfo=timezone.utc)


def _record(**fields) -> BaseItem:
    base = {"name": "file-name", "id": "x", "server_id": "s", "etag": "e", "type": "Episode"}
    base.update(fields)
    return BaseItem(**base)


def test_attach_parses_once_and_memoizes(tmp_path):
    nfo = tmp_path / "alpha.nfo"
    nfo.write_text(ALPHA_NFO, encoding="utf-8")
    item = Item(id="alpha", name="Alpha", directory=tmp_path, first_seen=FIRST_SEEN, nfo_path=nfo)
    library = Library()
    enricher = MetadataEnricher()

    first = enricher.attach(library, item)
    nfo.unlink()
    second = enricher.attach(library, item)

    assert first is not None
    assert second is first
    assert len(library.descriptors) == 1


def test_attach_failures_are_not_fatal_or_cached(tmp_path):
    broken = tmp_path / "broken.nfo"
    broken.write_text("<movie><title>oops", encoding="utf-8")
    item = Item(id="b", name="B", directory=tmp_path, first_seen=FIRST_SEEN, nfo_path=broken)
    missing = Item(
        id="m", name="M", directory=tmp_path, first_seen=FIRST_SEEN, nfo_path=tmp_path / "nope.nfo"
    )
    library = Library()
    enricher = MetadataEnricher()

    assert enricher.attach(library, item) is None
    assert enricher.attach(library, missing) is None
    assert len(library.descriptors) == 0

    broken.write_text("<movie><title>fixed</title></movie>", encoding="utf-8")
    assert enricher.attach(library, item).title == "fixed"


def test_concurrent_first_loads_share_one_descriptor(tmp_path):
    nfo = tmp_path / "alpha.nfo"
    nfo.write_text(ALPHA_NFO, encoding="utf-8")
    item = Item(id="alpha", name="Alpha", directory=tmp_path, first_seen=FIRST_SEEN, nfo_path=nfo)
    library = Library()
    enricher = MetadataEnricher()

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: enricher.attach(library, item), range(32)))

    assert all(result is not None for result in results)
    assert all(result == results[0] for result in results)
    assert library.descriptors.get("alpha") is not None
    assert all(result.title == "Alpha" for result in results)


def test_merge_overwrites_with_non_empty_fields_only():
    record = _record(premiere_date=FIRST_SEEN)
    descriptor = Descriptor(
        title="Real Title",
        plot="Plot",
        tagline="Tag",
        mpaa="R",
        rating=7.56,
        genres=("sci-fi", "Science Fiction", "drama"),
        studio="ACME",
        actors=(Actor(name="Ann", role="Hero", thumb="http://x/ann.jpg"),),
        year=1999,
        premiered="not a date",
    )

    MetadataEnricher().merge(record, descriptor)

    assert record.name == "Real Title"
    assert record.overview == "Plot"
    assert record.taglines == ["Tag"]
    assert record.official_rating == "R"
    assert record.community_rating == pytest.approx(7.6)
    assert record.genres == ["Science Fiction", "Drama"]
    assert [pair.name for pair in record.genre_items] == ["Science Fiction", "Drama"]
    assert record.studios[0].name == "ACME"
    assert record.people[0].primary_image_tag == "redirect_http://x/ann.jpg"
    assert record.production_year == 1999
    # Unparseable dates leave the first-seen default alone.
    assert record.premiere_date == FIRST_SEEN


def test_merge_synthesizes_sort_name_from_season_and_episode():
    record = _record()

    MetadataEnricher().merge(record, Descriptor(title="Pilot", season="2", episode="11"))

    assert record.parent_index_number == 2
    assert record.index_number == 11
    assert record.season_name == "Season 2"
    assert record.sort_name == "002 - 0011 - Pilot"


def test_merge_drops_non_numeric_season_numbers():
    record = _record()

    MetadataEnricher().merge(record, Descriptor(title="Special", season="x", episode="3"))

    assert record.parent_index_number is None
    assert record.index_number == 3
    assert record.sort_name == "Special"


def test_episode_never_carries_show_ratings():
    record = _record()
    show = Descriptor(mpaa="TV-MA", rating=8.4, genres=("Drama",), studio="HBO", title="Show")
    episode = Descriptor(title="Pilot", genres=("Crime",), aired="2010-01-02")

    MetadataEnricher().merge_episode(record, show, episode)

    assert record.name == "Pilot"
    assert record.official_rating is None
    assert record.community_rating is None
    assert record.genres == ["Crime"]
    assert record.studios[0].name == "HBO"
    assert record.premiere_date == datetime(2010, 1, 2, tzinfo=timezone.utc)


def test_episode_inherits_only_series_level_fields():
    record = _record()
    show = Descriptor(title="Show", plot="Series plot", genres=("Drama",))

    MetadataEnricher().merge_episode(record, show, None)

    assert record.name == "file-name"
    assert record.overview is None
    assert record.genres == ["Drama"]


def test_normalize_genres_folds_case_synonyms_and_separators():
    assert normalize_genres(["SCI-FI", "action & adventure", "Action", "kids"]) == [
        "Science Fiction",
        "Action",
        "Adventure",
        "Children",
    ]


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2010-01-02", datetime(2010, 1, 2, tzinfo=timezone.utc)),
        ("2010/01/02 10:11:12", datetime(2010, 1, 2, 10, 11, 12, tzinfo=timezone.utc)),
        ("02 Jan 2010", datetime(2010, 1, 2, tzinfo=timezone.utc)),
    ],
)
def test_parse_date_formats(value, expected):
    assert parse_date(value) == expected


def test_parse_date_rejects_garbage():
    assert parse_date("yesterday") is None


def test_episode_attach_uses_episode_descriptor(tmp_path: Path):
    nfo = tmp_path / "ep.nfo"
    nfo.write_text("<episodedetails><title>Ep</title></episodedetails>", encoding="utf-8")
    episode = Episode(id="e1", name="S01E01", video="S01E01.mp4", first_seen=FIRST_SEEN, nfo_path=nfo)

    assert MetadataEnricher().attach(Library(), episode).title == "Ep"
