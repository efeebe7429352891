"""Polymorphic assembly of presentation records for every entity kind."""

from __future__ import annotations

import logging
from typing import Sequence

from ..catalog import (
    Collection,
    CollectionKind,
    Episode,
    Item,
    Library,
    PlaylistView,
    Season,
)
from ..errors import NotFoundError
from ..identifiers import EntityKind, EntityRef, decode_id, encode_id, entity_tag, id_hash
from ..models import BaseItem
from .enricher import MetadataEnricher
from .media_source import MediaSourceBuilder

logger = logging.getLogger(__name__)

COLLECTION_ROOT_ID = "e9d5075a555c1cbc394eec4cef295274"
DISPLAY_PREFERENCES_ID = "f137a2dd21bbc1b99aa5c0f6bf02a805"

COLLECTION_TYPES: dict[CollectionKind, str] = {
    CollectionKind.MOVIES: "movies",
    CollectionKind.SHOWS: "tvshows",
}
ITEM_TYPES: dict[CollectionKind, str] = {
    CollectionKind.MOVIES: "Movie",
    CollectionKind.SHOWS: "Series",
}


class ItemMapper:
    """Builds client-facing records from one library snapshot.

    All methods are pure functions of the snapshot plus their arguments,
    apart from the descriptor memo the enricher fills on first use.
    """

    def __init__(
        self,
        library: Library,
        *,
        server_id: str,
        enricher: MetadataEnricher | None = None,
        media_sources: MediaSourceBuilder | None = None,
    ):
        self.library = library
        self.server_id = server_id
        self.enricher = enricher or MetadataEnricher()
        self.media_sources = media_sources or MediaSourceBuilder()

    def _record(self, external_id: str, **fields) -> BaseItem:
        return BaseItem(
            id=external_id,
            etag=entity_tag(external_id),
            server_id=self.server_id,
            **fields,
        )

    def collection(self, collection: Collection) -> BaseItem:
        external_id = encode_id(EntityKind.COLLECTION, collection.source_id)
        return self._record(
            external_id,
            name=collection.name,
            sort_name=collection.name,
            type="CollectionFolder",
            collection_type=COLLECTION_TYPES[collection.kind],
            is_folder=True,
            child_count=len(collection.items),
            parent_id=COLLECTION_ROOT_ID,
            display_preferences_id=DISPLAY_PREFERENCES_ID,
            date_created=self.library.scanned_at,
            premiere_date=self.library.scanned_at,
            location_type="FileSystem",
            path="/collection",
            media_type="Unknown",
            play_access="Full",
            primary_image_aspect_ratio=1.7777777777777777,
        )

    def collection_playlist(
        self, user_id: str, playlists: Sequence[PlaylistView]
    ) -> BaseItem:
        external_id = encode_id(EntityKind.COLLECTION_PLAYLIST, user_id)
        return self._record(
            external_id,
            name="Playlists",
            sort_name="Playlists",
            type="ManualPlaylistsFolder",
            collection_type="playlists",
            is_folder=True,
            child_count=len(playlists),
            parent_id=COLLECTION_ROOT_ID,
            display_preferences_id=DISPLAY_PREFERENCES_ID,
            date_created=self.library.scanned_at,
            location_type="FileSystem",
            media_type="Unknown",
            play_access="Full",
        )

    def playlist(self, user_id: str, playlist: PlaylistView) -> BaseItem:
        external_id = encode_id(EntityKind.PLAYLIST, playlist.id)
        return self._record(
            external_id,
            name=playlist.name,
            sort_name=playlist.name,
            type="Playlist",
            is_folder=True,
            child_count=len(playlist.item_ids),
            recursive_item_count=len(playlist.item_ids),
            parent_id=encode_id(EntityKind.COLLECTION_PLAYLIST, user_id),
            media_type="Video",
            location_type="FileSystem",
            play_access="Full",
            date_created=self.library.scanned_at,
        )

    def item(self, collection: Collection, item: Item, *, list_view: bool) -> BaseItem:
        """Record for a movie or a series.

        Movie detail lookups (``list_view=False``) omit the primary image tag;
        some clients otherwise show the poster where they expect the backdrop.
        """

        record = self._record(
            item.id,
            name=item.name,
            original_title=item.name,
            sort_name=item.sort_name or item.name,
            forced_sort_name=item.sort_name or item.name,
            parent_id=id_hash(collection.name),
            date_created=item.first_seen,
            premiere_date=item.first_seen,
            production_year=item.year or None,
            critic_rating=item.rating or None,
            primary_image_aspect_ratio=0.6666666666666666,
            location_type="FileSystem",
            type=ITEM_TYPES[collection.kind],
        )
        tag = record.etag
        if item.poster:
            record.image_tags = {"Primary": tag}
        if item.fanart:
            record.backdrop_image_tags = [tag]

        if collection.kind is CollectionKind.MOVIES:
            record.is_folder = False
            record.media_type = "Video"
            record.video_type = "VideoFile"
            record.container = "mov,mp4,m4a"
            record.path = item.video or None
            descriptor = self.enricher.attach(self.library, item)
            if item.video:
                source = self.media_sources.build(item.directory / item.video, descriptor)
                record.media_sources = [source]
                record.run_time_ticks = source.run_time_ticks
            if not list_view:
                record.image_tags = None
        else:
            record.is_folder = True
            record.child_count = len(item.seasons)
            record.recursive_item_count = sum(len(season.episodes) for season in item.seasons)
            descriptor = self.enricher.attach(self.library, item)

        self.enricher.merge(record, descriptor)
        return record

    def season(self, item: Item, season: Season) -> BaseItem:
        external_id = encode_id(EntityKind.SEASON, season.id)
        first_seen = min(
            (episode.first_seen for episode in season.episodes), default=item.first_seen
        )
        record = self._record(
            external_id,
            name=f"Season {season.season_no}",
            sort_name=f"{season.season_no:04d}",
            type="Season",
            is_folder=True,
            parent_id=item.id,
            series_id=item.id,
            series_name=item.name,
            index_number=season.season_no,
            child_count=len(season.episodes),
            recursive_item_count=len(season.episodes),
            location_type="FileSystem",
            media_type="Unknown",
            date_created=first_seen,
            premiere_date=first_seen,
        )
        if season.poster:
            record.image_tags = {"Primary": record.etag}
        return record

    def episode(self, item: Item, season: Season, episode: Episode) -> BaseItem:
        external_id = encode_id(EntityKind.EPISODE, episode.id)
        record = self._record(
            external_id,
            name=episode.name,
            sort_name=episode.name,
            type="Episode",
            parent_id=encode_id(EntityKind.SEASON, season.id),
            season_id=encode_id(EntityKind.SEASON, season.id),
            season_name=f"Season {season.season_no}",
            series_id=item.id,
            series_name=item.name,
            parent_index_number=season.season_no,
            location_type="FileSystem",
            media_type="Video",
            video_type="VideoFile",
            container="mov,mp4,m4a",
            path=episode.video,
            date_created=episode.first_seen,
            premiere_date=episode.first_seen,
        )
        if episode.thumb:
            record.image_tags = {"Primary": record.etag}

        show_descriptor = self.enricher.attach(self.library, item)
        episode_descriptor = self.enricher.attach(self.library, episode)
        self.enricher.merge_episode(record, show_descriptor, episode_descriptor)

        source = self.media_sources.build(item.directory / episode.video, episode_descriptor)
        record.media_sources = [source]
        record.run_time_ticks = source.run_time_ticks
        return record

    def seasons_of(self, item: Item) -> list[BaseItem]:
        return [self.season(item, season) for season in item.seasons]

    def episodes_of(self, item: Item, season_id: str | None = None) -> list[BaseItem]:
        """Episode records of a show, optionally limited to one external season id."""

        records: list[BaseItem] = []
        for season in item.seasons:
            if season_id and encode_id(EntityKind.SEASON, season.id) != season_id:
                continue
            records.extend(self.episode(item, season, episode) for episode in season.episodes)
        return records

    def resolve(self, external_id: str, *, list_view: bool = False) -> BaseItem:
        """Record for a single library entity addressed by its external id.

        Playlist kinds live outside the library snapshot and are rejected
        here; callers resolve them against the playlist store.
        """

        ref = decode_id(external_id)
        return self.resolve_ref(ref, list_view=list_view)

    def resolve_ref(self, ref: EntityRef, *, list_view: bool = False) -> BaseItem:
        if ref.kind is EntityKind.ITEM:
            found = self.library.find_item(ref.internal_id)
            if found is None:
                raise NotFoundError("Item not found")
            collection, item = found
            return self.item(collection, item, list_view=list_view)
        if ref.kind is EntityKind.COLLECTION:
            collection = self.library.get_collection(ref.internal_id)
            if collection is None:
                raise NotFoundError("Could not find collection")
            return self.collection(collection)
        if ref.kind is EntityKind.SEASON:
            found_season = self.library.find_season(ref.internal_id)
            if found_season is None:
                raise NotFoundError("Could not find season")
            _, item, season = found_season
            return self.season(item, season)
        if ref.kind is EntityKind.EPISODE:
            found_episode = self.library.find_episode(ref.internal_id)
            if found_episode is None:
                raise NotFoundError("Could not find episode")
            _, item, season, episode = found_episode
            return self.episode(item, season, episode)
        if ref.kind in (EntityKind.PLAYLIST, EntityKind.COLLECTION_PLAYLIST):
            raise NotFoundError("Playlists are not part of the library")
        raise AssertionError(f"Unhandled entity kind {ref.kind}")
