"""Request orchestration over the current library snapshot and the stores.

The mapping core reads descriptors and stats media files, so every call
into it is handed to a worker thread with ``asyncio.to_thread``. Store
lookups stay on the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Iterable, Sequence, Union

from ..catalog import Collection, CollectionKind, Item, Library, PlaylistView
from ..config import Settings
from ..db_models import PlayState
from ..errors import BadRequestError, NotFoundError
from ..identifiers import EntityKind, EntityRef, decode_id, encode_id, id_hash
from ..models import (
    BaseItem,
    Filters2Response,
    FiltersResponse,
    ItemsResponse,
    MediaLibrary,
    NameIdPair,
    PlaybackInfoResponse,
    PlaybackProgress,
    SearchHintsResponse,
    UserItemData,
)
from .enricher import MetadataEnricher, normalize_genres
from .images import ImageResolution, ImageResolver, resolve_stream
from .item_mapper import COLLECTION_TYPES, ItemMapper
from .library_index import LibraryService
from .media_source import MediaSourceBuilder
from .playlists import PlaylistRepository
from .query import QueryParams, latest, paginate, run_query, search_records
from .sessions import PlayStateRepository

logger = logging.getLogger(__name__)

PLAY_SESSION_ID = "fc3b27127bf84ed89a300c6285d697e2"

# Playlist data fetched from the store before a listing is mapped.
PlaylistSource = Union[list[PlaylistView], PlaylistView, None]


class CatalogService:
    """Answers catalog requests against one snapshot per call."""

    def __init__(
        self,
        settings: Settings,
        library_service: LibraryService,
        play_states: PlayStateRepository,
        playlists: PlaylistRepository,
    ):
        self._settings = settings
        self._library_service = library_service
        self._play_states = play_states
        self._playlists = playlists
        self._enricher = MetadataEnricher()
        self._media_sources = MediaSourceBuilder()

    @property
    def library(self) -> Library:
        return self._library_service.library

    def mapper(self, library: Library | None = None) -> ItemMapper:
        return ItemMapper(
            library if library is not None else self.library,
            server_id=self._settings.server_id,
            enricher=self._enricher,
            media_sources=self._media_sources,
        )

    # Library views -----------------------------------------------------

    async def user_views(self, user_id: str) -> ItemsResponse:
        mapper = self.mapper()
        records = [mapper.collection(c) for c in mapper.library.list_collections()]
        playlists = await self._playlists.list_for_user(user_id)
        records.append(mapper.collection_playlist(user_id, playlists))
        return ItemsResponse(items=records, total_record_count=len(records))

    def virtual_folders(self) -> list[MediaLibrary]:
        folders = []
        for collection in self.library.list_collections():
            external_id = encode_id(EntityKind.COLLECTION, collection.source_id)
            folders.append(
                MediaLibrary(
                    name=collection.name,
                    item_id=external_id,
                    primary_image_item_id=external_id,
                    collection_type=COLLECTION_TYPES[collection.kind],
                )
            )
        return folders

    # Listings -----------------------------------------------------------

    async def list_items(self, user_id: str, params: QueryParams) -> ItemsResponse:
        mapper = self.mapper()
        source = await self._playlist_source(user_id, params.parent_id)

        def build() -> ItemsResponse:
            records = self._candidates(mapper, user_id, params.parent_id, source)
            return run_query(records, params)

        return await asyncio.to_thread(build)

    async def latest_items(self, user_id: str, params: QueryParams) -> list[BaseItem]:
        mapper = self.mapper()
        source = await self._playlist_source(user_id, params.parent_id)

        def build() -> list[BaseItem]:
            records = self._candidates(mapper, user_id, params.parent_id, source)
            return latest(records, params)

        return await asyncio.to_thread(build)

    async def search_hints(self, params: QueryParams) -> SearchHintsResponse:
        mapper = self.mapper()

        def build() -> SearchHintsResponse:
            records = search_records(self._library_records(mapper, None), params.search_term)
            page, _ = paginate(records, params.start_index, params.limit)
            return SearchHintsResponse(search_hints=page, total_record_count=len(records))

        return await asyncio.to_thread(build)

    async def seasons(self, show_id: str) -> ItemsResponse:
        mapper = self.mapper()
        item = self._show(mapper.library, show_id)
        records = mapper.seasons_of(item)
        return ItemsResponse(items=records, total_record_count=len(records))

    async def episodes(self, show_id: str, season_id: str | None = None) -> ItemsResponse:
        mapper = self.mapper()
        item = self._show(mapper.library, show_id)
        records = await asyncio.to_thread(mapper.episodes_of, item, season_id)
        return ItemsResponse(items=records, total_record_count=len(records))

    async def resume(self, user_id: str, params: QueryParams) -> ItemsResponse:
        mapper = self.mapper()
        states = await self._play_states.resumable(user_id)
        records = await asyncio.to_thread(self._resume_records, mapper, states)
        page, start = paginate(records, params.start_index, params.limit)
        return ItemsResponse(items=page, total_record_count=len(records), start_index=start)

    # Single entities ----------------------------------------------------

    async def get_item(self, user_id: str, item_id: str) -> BaseItem:
        ref = decode_id(item_id)
        mapper = self.mapper()
        if ref.kind is EntityKind.COLLECTION_PLAYLIST:
            playlists = await self._playlists.list_for_user(user_id)
            return mapper.collection_playlist(user_id, playlists)
        if ref.kind is EntityKind.PLAYLIST:
            playlist = await self._playlists.get(ref.internal_id)
            return mapper.playlist(user_id, playlist)
        record = await asyncio.to_thread(mapper.resolve_ref, ref, list_view=False)
        state = await self._play_states.get(user_id, item_id)
        record.user_data = _user_data(item_id, state)
        return record

    async def playback_info(self, item_id: str) -> PlaybackInfoResponse:
        mapper = self.mapper()
        record = await asyncio.to_thread(mapper.resolve, item_id, list_view=True)
        if not record.media_sources:
            raise NotFoundError("Item has no playable media")
        return PlaybackInfoResponse(
            media_sources=record.media_sources, play_session_id=PLAY_SESSION_ID
        )

    async def filters(self, parent_id: str | None) -> FiltersResponse:
        return await asyncio.to_thread(self._filters, self.library, parent_id)

    async def filters2(self, parent_id: str | None) -> Filters2Response:
        genres = (await self.filters(parent_id)).genres
        return Filters2Response(
            genres=[NameIdPair(name=genre, id=id_hash(genre)) for genre in genres]
        )

    async def image(
        self, item_id: str, image_type: str, tag: str | None
    ) -> ImageResolution:
        resolver = ImageResolver(
            self.library, poster_quality=self._settings.image_quality_poster
        )
        return await asyncio.to_thread(resolver.resolve, item_id, image_type, tag)

    def stream_path(self, item_id: str) -> Path:
        return resolve_stream(self.library, item_id)

    # Play state ---------------------------------------------------------

    async def report_playback(
        self, user_id: str, progress: PlaybackProgress, *, stopped: bool = False
    ) -> None:
        run_time_ticks = None
        if stopped:
            run_time_ticks = await asyncio.to_thread(self._run_time_ticks, progress.item_id)
        await self._play_states.record(
            user_id,
            progress.item_id,
            progress.position_ticks,
            stopped=stopped,
            run_time_ticks=run_time_ticks,
        )

    # Playlists ----------------------------------------------------------

    async def create_playlist(
        self, user_id: str, name: str, item_ids: Sequence[str]
    ) -> str:
        playlist = await self._playlists.create(user_id, name, item_ids)
        return encode_id(EntityKind.PLAYLIST, playlist.id)

    async def playlist_items(
        self, user_id: str, playlist_id: str, params: QueryParams
    ) -> ItemsResponse:
        playlist = await self._playlists.get(self._playlist_internal_id(playlist_id))
        records = await asyncio.to_thread(self._playlist_records, self.mapper(), playlist)
        page, start = paginate(records, params.start_index, params.limit)
        return ItemsResponse(items=page, total_record_count=len(records), start_index=start)

    async def add_to_playlist(self, playlist_id: str, item_ids: Sequence[str]) -> None:
        await self._playlists.add_items(self._playlist_internal_id(playlist_id), item_ids)

    async def remove_from_playlist(
        self, playlist_id: str, entry_ids: Sequence[str]
    ) -> None:
        await self._playlists.remove_entries(
            self._playlist_internal_id(playlist_id), entry_ids
        )

    # Helpers ------------------------------------------------------------

    @staticmethod
    def _playlist_internal_id(playlist_id: str) -> str:
        ref = decode_id(playlist_id)
        if ref.kind is not EntityKind.PLAYLIST:
            raise NotFoundError("Playlist not found")
        return ref.internal_id

    async def _playlist_source(
        self, user_id: str, parent_id: str | None
    ) -> PlaylistSource:
        if not parent_id:
            return None
        ref = decode_id(parent_id)
        if ref.kind is EntityKind.COLLECTION_PLAYLIST:
            return await self._playlists.list_for_user(user_id)
        if ref.kind is EntityKind.PLAYLIST:
            return await self._playlists.get(ref.internal_id)
        return None

    def _playlist_records(
        self, mapper: ItemMapper, playlist: PlaylistView
    ) -> list[BaseItem]:
        records = []
        for entry in playlist.entries:
            try:
                record = mapper.resolve(entry.item_id, list_view=True)
            except (NotFoundError, BadRequestError):
                logger.debug("Playlist %s entry %s no longer resolves", playlist.id, entry.item_id)
                continue
            record.playlist_item_id = entry.entry_id
            records.append(record)
        return records

    @staticmethod
    def _resume_records(mapper: ItemMapper, states: Sequence[PlayState]) -> list[BaseItem]:
        records: list[BaseItem] = []
        for state in states:
            try:
                record = mapper.resolve(state.item_id, list_view=True)
            except (NotFoundError, BadRequestError):
                logger.debug("Play state for vanished item %s skipped", state.item_id)
                continue
            record.user_data = _user_data(state.item_id, state)
            records.append(record)
        return records

    def _run_time_ticks(self, item_id: str) -> int | None:
        try:
            record = self.mapper().resolve(item_id, list_view=True)
        except (NotFoundError, BadRequestError):
            logger.debug("Playback reported for unknown item %s", item_id)
            return None
        return record.run_time_ticks

    @staticmethod
    def _library_records(
        mapper: ItemMapper, collection: Collection | None
    ) -> Iterable[BaseItem]:
        return [
            mapper.item(owner, item, list_view=True)
            for owner, item in mapper.library.iter_items(collection)
        ]

    def _collection_by_name_hash(
        self, library: Library, value: str
    ) -> Collection | None:
        for collection in library.list_collections():
            if id_hash(collection.name) == value:
                return collection
        return None

    def _filters(self, library: Library, parent_id: str | None) -> FiltersResponse:
        values = library.aggregate_filter_values(
            self._filter_scope(library, parent_id),
            lambda item: self._enricher.attach(library, item),
        )
        return FiltersResponse(
            genres=sorted(normalize_genres(values.genres)),
            tags=values.tags,
            official_ratings=values.official_ratings,
            years=values.years,
        )

    def _filter_scope(self, library: Library, parent_id: str | None) -> Collection | None:
        if not parent_id:
            return None
        ref = decode_id(parent_id)
        if ref.kind is EntityKind.COLLECTION:
            collection = library.get_collection(ref.internal_id)
            if collection is None:
                raise NotFoundError("Collection not found")
            return collection
        return self._collection_by_name_hash(library, parent_id)

    @staticmethod
    def _show(library: Library, show_id: str) -> Item:
        found = library.find_item(show_id)
        if found is None or found[0].kind is not CollectionKind.SHOWS:
            raise NotFoundError("Could not find show")
        return found[1]

    def _candidates(
        self,
        mapper: ItemMapper,
        user_id: str,
        parent_id: str | None,
        source: PlaylistSource = None,
    ) -> list[BaseItem]:
        """Records a listing request draws from, based on its parent id.

        Playlist parents are answered from ``source``, which the caller
        fetched from the store beforehand.
        """

        library = mapper.library
        if not parent_id:
            return list(self._library_records(mapper, None))

        ref = decode_id(parent_id)
        if ref.kind is EntityKind.COLLECTION:
            collection = library.get_collection(ref.internal_id)
            if collection is None:
                raise NotFoundError("Collection not found")
            return list(self._library_records(mapper, collection))
        if ref.kind is EntityKind.COLLECTION_PLAYLIST:
            playlists = source if isinstance(source, list) else []
            return [mapper.playlist(user_id, playlist) for playlist in playlists]
        if ref.kind is EntityKind.PLAYLIST:
            if not isinstance(source, PlaylistView):
                raise NotFoundError("Playlist not found")
            return self._playlist_records(mapper, source)
        if ref.kind is EntityKind.SEASON:
            found_season = library.find_season(ref.internal_id)
            if found_season is None:
                raise NotFoundError("Could not find season")
            _, item, season = found_season
            return [mapper.episode(item, season, episode) for episode in season.episodes]
        return self._item_children(mapper, ref, parent_id)

    def _item_children(
        self, mapper: ItemMapper, ref: EntityRef, parent_id: str
    ) -> list[BaseItem]:
        library = mapper.library
        if ref.kind is EntityKind.ITEM:
            found = library.find_item(ref.internal_id)
            if found is not None:
                collection, item = found
                if collection.kind is not CollectionKind.SHOWS:
                    raise NotFoundError("Item has no children")
                return mapper.seasons_of(item)
            collection = self._collection_by_name_hash(library, parent_id)
            if collection is not None:
                return list(self._library_records(mapper, collection))
        raise NotFoundError("Collection not found")


def _user_data(item_id: str, state: PlayState | None) -> UserItemData:
    return UserItemData(
        key=item_id,
        playback_position_ticks=state.position_ticks if state else 0,
        play_count=state.play_count if state else 0,
        played=state.played if state else False,
    )
