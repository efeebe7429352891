"""In-memory catalog snapshot produced by the library scanner."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator

logger = logging.getLogger(__name__)


class CollectionKind(str, Enum):
    MOVIES = "movies"
    SHOWS = "shows"


@dataclass(frozen=True, slots=True)
class Actor:
    name: str
    role: str = ""
    thumb: str = ""


@dataclass(frozen=True, slots=True)
class VideoDetails:
    codec: str = ""
    bitrate: int = 0
    width: int = 0
    height: int = 0
    frame_rate: float = 0.0
    duration_seconds: int = 0


@dataclass(frozen=True, slots=True)
class AudioDetails:
    codec: str = ""
    bitrate: int = 0
    channels: int = 0
    language: str = ""


@dataclass(frozen=True, slots=True)
class StreamDetails:
    """Technical description of a media file embedded in its descriptor."""

    video: VideoDetails = field(default_factory=VideoDetails)
    audio: AudioDetails = field(default_factory=AudioDetails)


@dataclass(frozen=True, slots=True)
class Descriptor:
    """Parsed sidecar metadata for a movie, show or episode."""

    title: str = ""
    plot: str = ""
    tagline: str = ""
    season: str = ""
    episode: str = ""
    mpaa: str = ""
    rating: float = 0.0
    genres: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    studio: str = ""
    actors: tuple[Actor, ...] = ()
    year: int = 0
    premiered: str = ""
    aired: str = ""
    stream_details: StreamDetails | None = None


@dataclass(frozen=True, slots=True)
class Episode:
    id: str
    name: str
    video: str
    first_seen: datetime
    thumb: str = ""
    nfo_path: Path | None = None


@dataclass(frozen=True, slots=True)
class Season:
    id: str
    season_no: int
    episodes: tuple[Episode, ...] = ()
    poster: str = ""


@dataclass(frozen=True, slots=True)
class Item:
    """A movie or a series. Media paths are relative to ``directory``."""

    id: str
    name: str
    directory: Path
    first_seen: datetime
    year: int = 0
    sort_name: str = ""
    rating: float = 0.0
    video: str = ""
    poster: str = ""
    fanart: str = ""
    nfo_path: Path | None = None
    seasons: tuple[Season, ...] = ()


@dataclass(frozen=True, slots=True)
class Collection:
    name: str
    kind: CollectionKind
    source_id: int
    directory: Path
    items: tuple[Item, ...] = ()

    @property
    def id(self) -> str:
        return str(self.source_id)


@dataclass(slots=True)
class FilterValues:
    """Distinct values clients offer as filter choices."""

    genres: list[str]
    tags: list[str]
    official_ratings: list[str]
    years: list[int]


class DescriptorCache:
    """Memo of parsed descriptors keyed by entity id.

    A value is only published once fully parsed, and ``dict.setdefault`` makes
    the first published value win, so concurrent loaders of the same entity
    all end up sharing one immutable descriptor. Failed loads are not stored.
    """

    def __init__(self) -> None:
        self._entries: dict[str, Descriptor] = {}

    def get(self, entity_id: str) -> Descriptor | None:
        return self._entries.get(entity_id)

    def publish(self, entity_id: str, descriptor: Descriptor) -> Descriptor:
        return self._entries.setdefault(entity_id, descriptor)

    def __len__(self) -> int:
        return len(self._entries)


class Library:
    """Immutable snapshot of every collection with O(1) id lookups."""

    def __init__(
        self,
        collections: tuple[Collection, ...] | list[Collection] = (),
        *,
        scanned_at: datetime | None = None,
    ):
        self.collections: tuple[Collection, ...] = tuple(collections)
        self.scanned_at = scanned_at or datetime.now(timezone.utc)
        self.descriptors = DescriptorCache()
        self._collections: dict[str, Collection] = {}
        self._items: dict[str, tuple[Collection, Item]] = {}
        self._seasons: dict[str, tuple[Collection, Item, Season]] = {}
        self._episodes: dict[str, tuple[Collection, Item, Season, Episode]] = {}
        self._build_index()

    def _build_index(self) -> None:
        for collection in self.collections:
            self._collections.setdefault(collection.id, collection)
            for item in collection.items:
                if item.id in self._items:
                    logger.warning("Duplicate item id %s (%s) ignored", item.id, item.name)
                    continue
                self._items[item.id] = (collection, item)
                for season in item.seasons:
                    if season.id in self._seasons:
                        logger.warning("Duplicate season id %s ignored", season.id)
                        continue
                    self._seasons[season.id] = (collection, item, season)
                    for episode in season.episodes:
                        if episode.id in self._episodes:
                            logger.warning("Duplicate episode id %s ignored", episode.id)
                            continue
                        self._episodes[episode.id] = (collection, item, season, episode)

    def list_collections(self) -> tuple[Collection, ...]:
        return self.collections

    def get_collection(self, collection_id: str) -> Collection | None:
        return self._collections.get(collection_id)

    def find_item(self, item_id: str) -> tuple[Collection, Item] | None:
        return self._items.get(item_id)

    def find_season(self, season_id: str) -> tuple[Collection, Item, Season] | None:
        return self._seasons.get(season_id)

    def find_episode(
        self, episode_id: str
    ) -> tuple[Collection, Item, Season, Episode] | None:
        return self._episodes.get(episode_id)

    def iter_items(
        self, collection: Collection | None = None
    ) -> Iterator[tuple[Collection, Item]]:
        """Yield items in scan order, optionally restricted to one collection."""

        for candidate in self.collections:
            if collection is not None and candidate.source_id != collection.source_id:
                continue
            for item in candidate.items:
                yield candidate, item

    def aggregate_filter_values(
        self,
        collection: Collection | None,
        descriptor_for: Callable[[Item], Descriptor | None],
    ) -> FilterValues:
        genres: set[str] = set()
        tags: set[str] = set()
        ratings: set[str] = set()
        years: set[int] = set()
        for _, item in self.iter_items(collection):
            if item.year:
                years.add(item.year)
            descriptor = descriptor_for(item)
            if descriptor is None:
                continue
            genres.update(descriptor.genres)
            tags.update(descriptor.tags)
            if descriptor.mpaa:
                ratings.add(descriptor.mpaa)
            if descriptor.year:
                years.add(descriptor.year)
        return FilterValues(
            genres=sorted(genres),
            tags=sorted(tags),
            official_ratings=sorted(ratings),
            years=sorted(years),
        )

    def __len__(self) -> int:
        return len(self._items)


@dataclass(frozen=True, slots=True)
class PlaylistEntryView:
    entry_id: str
    item_id: str


@dataclass(frozen=True, slots=True)
class PlaylistView:
    """Playlist contents as loaded from the playlist store."""

    id: str
    name: str
    entries: tuple[PlaylistEntryView, ...] = ()

    @property
    def item_ids(self) -> tuple[str, ...]:
        return tuple(entry.item_id for entry in self.entries)
