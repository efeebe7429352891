"""Pydantic models describing the Jellyfin-compatible wire payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_pascal


class WireModel(BaseModel):
    """Base for payloads exchanged with clients using PascalCase keys."""

    model_config = ConfigDict(alias_generator=to_pascal, populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON-ready representation sent to clients."""

        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class NameIdPair(WireModel):
    name: str
    id: str


class Person(WireModel):
    name: str
    id: str
    role: str | None = None
    type: str = "Actor"
    primary_image_tag: str | None = None


class MediaStream(WireModel):
    index: int
    type: str
    codec: str | None = None
    codec_tag: str | None = None
    language: str | None = None
    time_base: str | None = None
    title: str | None = None
    display_title: str | None = None
    is_default: bool = False
    is_interlaced: bool = False
    height: int | None = None
    width: int | None = None
    average_frame_rate: float | None = None
    real_frame_rate: float | None = None
    bit_rate: int | None = None
    channels: int | None = None
    channel_layout: str | None = None
    sample_rate: int | None = None
    audio_spatial_format: str | None = None
    localized_default: str | None = None
    localized_external: str | None = None


class MediaSource(WireModel):
    id: str
    e_tag: str
    name: str
    path: str
    type: str = "Default"
    container: str = "mp4"
    protocol: str = "File"
    video_type: str = "VideoFile"
    size: int | None = None
    bitrate: int | None = None
    run_time_ticks: int | None = None
    is_remote: bool = False
    supports_transcoding: bool = True
    supports_direct_stream: bool = True
    supports_direct_play: bool = True
    supports_probing: bool = True
    is_infinite_stream: bool = False
    requires_opening: bool = False
    requires_closing: bool = False
    requires_looping: bool = False
    read_at_native_framerate: bool = False
    formats: list[str] = Field(default_factory=list)
    media_streams: list[MediaStream] = Field(default_factory=list)


class UserItemData(WireModel):
    playback_position_ticks: int = 0
    play_count: int = 0
    is_favorite: bool = False
    played: bool = False
    key: str


class BaseItem(WireModel):
    """Presentation record for any entity handed to a client."""

    name: str
    id: str
    server_id: str
    etag: str
    type: str
    is_folder: bool = False
    parent_id: str | None = None
    original_title: str | None = None
    sort_name: str | None = None
    forced_sort_name: str | None = None
    overview: str | None = None
    taglines: list[str] | None = None
    collection_type: str | None = None
    date_created: datetime | None = None
    premiere_date: datetime | None = None
    production_year: int | None = None
    official_rating: str | None = None
    community_rating: float | None = None
    critic_rating: float | None = None
    run_time_ticks: int | None = None
    child_count: int | None = None
    recursive_item_count: int | None = None
    index_number: int | None = None
    parent_index_number: int | None = None
    series_id: str | None = None
    series_name: str | None = None
    season_id: str | None = None
    season_name: str | None = None
    genres: list[str] | None = None
    genre_items: list[NameIdPair] | None = None
    studios: list[NameIdPair] | None = None
    people: list[Person] | None = None
    location_type: str | None = None
    media_type: str | None = None
    video_type: str | None = None
    container: str | None = None
    path: str | None = None
    play_access: str | None = None
    display_preferences_id: str | None = None
    primary_image_aspect_ratio: float | None = None
    image_tags: dict[str, str] | None = None
    backdrop_image_tags: list[str] | None = None
    media_sources: list[MediaSource] | None = None
    playlist_item_id: str | None = None
    user_data: UserItemData | None = None
    can_delete: bool = False
    can_download: bool = False


class ItemsResponse(WireModel):
    items: list[BaseItem] = Field(default_factory=list)
    total_record_count: int = 0
    start_index: int = 0


class SearchHintsResponse(WireModel):
    search_hints: list[BaseItem] = Field(default_factory=list)
    total_record_count: int = 0


class PlaybackInfoResponse(WireModel):
    media_sources: list[MediaSource]
    play_session_id: str


class FiltersResponse(WireModel):
    genres: list[str]
    tags: list[str]
    official_ratings: list[str]
    years: list[int]


class Filters2Response(WireModel):
    genres: list[NameIdPair]
    tags: list[NameIdPair] = Field(default_factory=list)


class MediaLibrary(WireModel):
    name: str
    item_id: str
    primary_image_item_id: str
    collection_type: str
    locations: list[str] = Field(default_factory=lambda: ["/"])


class UserPolicy(WireModel):
    is_administrator: bool = False
    is_disabled: bool = False
    enable_media_playback: bool = True
    enable_all_folders: bool = True
    enable_content_deletion: bool = False


class UserDto(WireModel):
    name: str
    id: str
    server_id: str
    has_password: bool = True
    has_configured_password: bool = True
    has_configured_easy_password: bool = False
    enable_auto_login: bool = False
    last_login_date: datetime | None = None
    last_activity_date: datetime | None = None
    policy: UserPolicy = Field(default_factory=UserPolicy)


class SessionInfo(WireModel):
    id: str
    user_id: str
    user_name: str
    client: str
    device_name: str
    device_id: str
    application_version: str
    last_activity_date: datetime
    is_active: bool = True
    remote_end_point: str | None = None


class AuthenticationResult(WireModel):
    user: UserDto
    session_info: SessionInfo
    access_token: str
    server_id: str


class SystemInfo(WireModel):
    id: str
    server_name: str
    version: str
    product_name: str = "Jellyfin Server"
    local_address: str | None = None
    operating_system: str | None = None
    startup_wizard_completed: bool = True


class AuthenticateByName(WireModel):
    """Inbound login payload; the password is accepted but never checked."""

    username: str = ""
    pw: str | None = None


class PlaybackProgress(WireModel):
    """Inbound play-state report from ``/Sessions/Playing`` endpoints."""

    item_id: str = Field(min_length=1)
    position_ticks: int = Field(default=0, ge=0)
    is_paused: bool = False
    play_session_id: str | None = None
    media_source_id: str | None = None


class CreatePlaylist(WireModel):
    name: str = Field(min_length=1, max_length=200)
    ids: list[str] = Field(default_factory=list)
    user_id: str | None = None
