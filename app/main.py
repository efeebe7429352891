"""Entry point for the FastAPI-powered Jellyfin-compatible media server."""

from __future__ import annotations

import json
import logging
import socket
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse
from pydantic import ValidationError

from . import __version__
from .config import Settings, settings
from .database import Database
from .errors import BadRequestError, MediaBridgeError, NotFoundError, UnimplementedError
from .identifiers import EntityKind, encode_id
from .models import (
    AuthenticateByName,
    AuthenticationResult,
    CreatePlaylist,
    ItemsResponse,
    PlaybackProgress,
    SessionInfo,
    SystemInfo,
    UserDto,
    UserPolicy,
)
from .services.catalog import CatalogService
from .services.images import IMAGE_CACHE_CONTROL, ImageService, ImageTarget
from .services.item_mapper import DISPLAY_PREFERENCES_ID
from .services.library_index import LibraryService
from .services.playlists import PlaylistRepository
from .services.query import QueryParams
from .services.sessions import (
    PlayStateRepository,
    SessionStore,
    extract_token,
    parse_authorization,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Version string clients compare against to enable protocol features.
PROTOCOL_VERSION = "10.10.3"
PRODUCT_NAME = "Jellyfin Server"

app: FastAPI


def create_app(app_settings: Settings | None = None) -> FastAPI:
    config = app_settings or settings

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI):
        database = Database(config.database_url)
        await database.create_all()

        library_service = LibraryService(
            config.collections, rescan_interval=config.rescan_interval_seconds
        )
        sessions = SessionStore(
            database.session_factory,
            user_id=config.user_id,
            user_name=config.user_name,
        )
        play_states = PlayStateRepository(database.session_factory)
        playlists = PlaylistRepository(database.session_factory)
        catalog_service = CatalogService(config, library_service, play_states, playlists)

        fastapi_app.state.database = database
        fastapi_app.state.library_service = library_service
        fastapi_app.state.sessions = sessions
        fastapi_app.state.catalog_service = catalog_service
        fastapi_app.state.image_service = ImageService(config.image_cache_dir)
        await library_service.start()

        try:
            yield
        finally:  # pragma: no cover - teardown path exercised at runtime
            await library_service.stop()
            await database.dispose()

    fastapi_app = FastAPI(
        title=config.app_name,
        description="Serves a local media library to Jellyfin clients",
        version=__version__,
        lifespan=lifespan,
    )
    fastapi_app.state.settings = config

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_catalog_service(app: FastAPI) -> CatalogService:
    service = getattr(app.state, "catalog_service", None)
    if not isinstance(service, CatalogService):
        raise RuntimeError("Catalog service not initialised")
    return service


def query_params(request: Request) -> QueryParams:
    """Listing parameters with repeated names joined by commas."""

    merged: dict[str, list[str]] = {}
    for key, value in request.query_params.multi_items():
        merged.setdefault(key.lower(), []).append(value)
    return QueryParams.from_mapping({key: ",".join(values) for key, values in merged.items()})


def query_value(request: Request, name: str) -> str | None:
    wanted = name.lower()
    for key, value in request.query_params.multi_items():
        if key.lower() == wanted:
            return value
    return None


async def read_json(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise BadRequestError("Invalid JSON payload") from exc


def register_routes(fastapi_app: FastAPI) -> None:
    config: Settings = fastapi_app.state.settings

    async def _authenticated_user(request: Request) -> str:
        sessions: SessionStore = request.app.state.sessions
        token = extract_token(request.headers, request.query_params)
        record = await sessions.validate(token)
        return record.user_id

    def _user_dto() -> UserDto:
        now = datetime.now(timezone.utc)
        return UserDto(
            name=config.user_name,
            id=config.user_id,
            server_id=config.server_id,
            last_login_date=now,
            last_activity_date=now,
            policy=UserPolicy(),
        )

    def _system_info(request: Request) -> SystemInfo:
        return SystemInfo(
            id=config.server_id,
            server_name=config.server_name,
            version=PROTOCOL_VERSION,
            product_name=PRODUCT_NAME,
            local_address=str(request.base_url).rstrip("/"),
            operating_system=socket.gethostname(),
        )

    @fastapi_app.exception_handler(MediaBridgeError)
    async def _mediabridge_error(_: Request, exc: MediaBridgeError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("Request failed: %s", exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @fastapi_app.exception_handler(ValidationError)
    async def _validation_error(_: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "error": "Invalid payload",
                "detail": exc.errors(include_url=False, include_context=False),
            },
        )

    # System ---------------------------------------------------------------

    @fastapi_app.get("/System/Info/Public")
    async def system_info_public(request: Request) -> dict[str, Any]:
        return _system_info(request).to_payload()

    @fastapi_app.get("/System/Info")
    async def system_info(request: Request) -> dict[str, Any]:
        await _authenticated_user(request)
        return _system_info(request).to_payload()

    @fastapi_app.api_route("/System/Ping", methods=["GET", "POST"])
    async def system_ping() -> str:
        return PRODUCT_NAME

    # Users ----------------------------------------------------------------

    @fastapi_app.post("/Users/AuthenticateByName")
    async def authenticate_by_name(request: Request) -> dict[str, Any]:
        payload = await read_json(request)
        if not isinstance(payload, dict):
            raise BadRequestError("Invalid JSON payload")
        login = AuthenticateByName.model_validate(payload)

        client_fields: dict[str, str] = {}
        for header in ("x-emby-authorization", "authorization"):
            value = request.headers.get(header)
            if value:
                client_fields = parse_authorization(value)
                break

        sessions: SessionStore = request.app.state.sessions
        record = await sessions.authenticate(
            login.username,
            device_id=client_fields.get("deviceid"),
            device_name=client_fields.get("device"),
            client=client_fields.get("client"),
        )
        result = AuthenticationResult(
            user=_user_dto(),
            session_info=SessionInfo(
                id=record.token[:32],
                user_id=record.user_id,
                user_name=config.user_name,
                client=record.client or "",
                device_name=record.device_name or "",
                device_id=record.device_id or "",
                application_version=client_fields.get("version", ""),
                last_activity_date=datetime.now(timezone.utc),
                remote_end_point=request.client.host if request.client else None,
            ),
            access_token=record.token,
            server_id=config.server_id,
        )
        return result.to_payload()

    @fastapi_app.get("/Users/Me")
    async def users_me(request: Request) -> dict[str, Any]:
        await _authenticated_user(request)
        return _user_dto().to_payload()

    @fastapi_app.get("/Users/{user}")
    async def users(user: str, request: Request) -> dict[str, Any]:
        await _authenticated_user(request)
        return _user_dto().to_payload()

    @fastapi_app.get("/DisplayPreferences/{preferences_id}")
    async def display_preferences(preferences_id: str, request: Request) -> dict[str, Any]:
        await _authenticated_user(request)
        return {
            "Id": DISPLAY_PREFERENCES_ID,
            "SortBy": "SortName",
            "SortOrder": "Ascending",
            "RememberIndexing": False,
            "RememberSorting": False,
            "PrimaryImageHeight": 250,
            "PrimaryImageWidth": 250,
            "ScrollDirection": "Horizontal",
            "ShowBackdrop": True,
            "ShowSidebar": False,
            "Client": query_value(request, "client") or "emby",
            "CustomPrefs": {
                "SkipForwardLength": "30000",
                "SkipBackLength": "10000",
                "EnableNextVideoInfoOverlay": "False",
            },
        }

    # Library views --------------------------------------------------------

    @fastapi_app.get("/UserViews")
    @fastapi_app.get("/Users/{user}/Views")
    async def user_views(request: Request) -> dict[str, Any]:
        user_id = await _authenticated_user(request)
        service = get_catalog_service(fastapi_app)
        return (await service.user_views(user_id)).to_payload()

    @fastapi_app.get("/Users/{user}/GroupingOptions")
    async def grouping_options(request: Request) -> list[dict[str, Any]]:
        await _authenticated_user(request)
        service = get_catalog_service(fastapi_app)
        return [
            {"Name": collection.name, "Id": encode_id(EntityKind.COLLECTION, collection.source_id)}
            for collection in service.library.list_collections()
        ]

    @fastapi_app.get("/Library/VirtualFolders")
    async def virtual_folders(request: Request) -> list[dict[str, Any]]:
        await _authenticated_user(request)
        service = get_catalog_service(fastapi_app)
        return [folder.to_payload() for folder in service.virtual_folders()]

    # Item listings --------------------------------------------------------
    # Fixed paths below /Items must be registered before /Items/{item}.

    @fastapi_app.get("/Items/Latest")
    @fastapi_app.get("/Users/{user}/Items/Latest")
    async def items_latest(request: Request) -> list[dict[str, Any]]:
        user_id = await _authenticated_user(request)
        service = get_catalog_service(fastapi_app)
        records = await service.latest_items(user_id, query_params(request))
        return [record.to_payload() for record in records]

    @fastapi_app.get("/Items/Resume")
    @fastapi_app.get("/UserItems/Resume")
    @fastapi_app.get("/Users/{user}/Items/Resume")
    async def items_resume(request: Request) -> dict[str, Any]:
        user_id = await _authenticated_user(request)
        service = get_catalog_service(fastapi_app)
        return (await service.resume(user_id, query_params(request))).to_payload()

    @fastapi_app.get("/Items/Filters")
    async def items_filters(request: Request) -> dict[str, Any]:
        await _authenticated_user(request)
        service = get_catalog_service(fastapi_app)
        return (await service.filters(query_params(request).parent_id)).to_payload()

    @fastapi_app.get("/Items/Filters2")
    async def items_filters2(request: Request) -> dict[str, Any]:
        await _authenticated_user(request)
        service = get_catalog_service(fastapi_app)
        return (await service.filters2(query_params(request).parent_id)).to_payload()

    @fastapi_app.get("/Items/Suggestions")
    @fastapi_app.get("/Shows/NextUp")
    @fastapi_app.get("/Persons")
    async def empty_listing(request: Request) -> dict[str, Any]:
        await _authenticated_user(request)
        return ItemsResponse().to_payload()

    @fastapi_app.get("/Items")
    @fastapi_app.get("/Users/{user}/Items")
    async def items(request: Request) -> dict[str, Any]:
        user_id = await _authenticated_user(request)
        service = get_catalog_service(fastapi_app)
        return (await service.list_items(user_id, query_params(request))).to_payload()

    @fastapi_app.get("/Items/{item}")
    @fastapi_app.get("/Users/{user}/Items/{item}")
    async def item_detail(item: str, request: Request) -> dict[str, Any]:
        user_id = await _authenticated_user(request)
        service = get_catalog_service(fastapi_app)
        return (await service.get_item(user_id, item)).to_payload()

    @fastapi_app.delete("/Items/{item}")
    async def delete_item(item: str, request: Request) -> Response:
        await _authenticated_user(request)
        raise UnimplementedError("Deleting media is not supported")

    @fastapi_app.get("/Items/{item}/Similar")
    @fastapi_app.get("/MediaSegments/{item}")
    async def empty_item_listing(item: str, request: Request) -> dict[str, Any]:
        await _authenticated_user(request)
        return ItemsResponse().to_payload()

    @fastapi_app.get("/Search/Hints")
    async def search_hints(request: Request) -> dict[str, Any]:
        await _authenticated_user(request)
        service = get_catalog_service(fastapi_app)
        return (await service.search_hints(query_params(request))).to_payload()

    # Shows ----------------------------------------------------------------

    @fastapi_app.get("/Shows/{show}/Seasons")
    async def show_seasons(show: str, request: Request) -> dict[str, Any]:
        await _authenticated_user(request)
        service = get_catalog_service(fastapi_app)
        return (await service.seasons(show)).to_payload()

    @fastapi_app.get("/Shows/{show}/Episodes")
    async def show_episodes(show: str, request: Request) -> dict[str, Any]:
        await _authenticated_user(request)
        service = get_catalog_service(fastapi_app)
        return (await service.episodes(show, query_params(request).season_id)).to_payload()

    # Media ----------------------------------------------------------------

    @fastapi_app.get("/Items/{item}/Images/{image_type}")
    @fastapi_app.get("/Items/{item}/Images/{image_type}/{image_index}")
    async def item_image(item: str, image_type: str, request: Request) -> Response:
        service = get_catalog_service(fastapi_app)
        resolution = await service.image(item, image_type, query_value(request, "tag"))
        headers = {"Cache-Control": IMAGE_CACHE_CONTROL}
        if resolution.target is ImageTarget.REDIRECT:
            return RedirectResponse(resolution.location, status_code=302, headers=headers)

        path = Path(resolution.location)
        if resolution.quality is not None:
            image_service: ImageService = request.app.state.image_service
            path = await image_service.open_transformed_async(path, resolution.quality)
        if not path.is_file():
            raise NotFoundError("File not found")
        return FileResponse(path, headers=headers)

    @fastapi_app.api_route("/Items/{item}/PlaybackInfo", methods=["GET", "POST"])
    async def playback_info(item: str, request: Request) -> dict[str, Any]:
        await _authenticated_user(request)
        service = get_catalog_service(fastapi_app)
        return (await service.playback_info(item)).to_payload()

    @fastapi_app.get("/Videos/{item}/stream")
    @fastapi_app.get("/Videos/{item}/stream.{container}")
    async def video_stream(item: str) -> FileResponse:
        service = get_catalog_service(fastapi_app)
        path = service.stream_path(item)
        if not path.is_file():
            raise NotFoundError("File not found")
        return FileResponse(path)

    # Play state -----------------------------------------------------------

    async def _report_playback(request: Request, *, stopped: bool) -> Response:
        user_id = await _authenticated_user(request)
        payload = await read_json(request)
        if not isinstance(payload, dict):
            raise BadRequestError("Invalid JSON payload")
        progress = PlaybackProgress.model_validate(payload)
        service = get_catalog_service(fastapi_app)
        await service.report_playback(user_id, progress, stopped=stopped)
        return Response(status_code=204)

    @fastapi_app.post("/Sessions/Playing")
    @fastapi_app.post("/Sessions/Playing/Progress")
    async def sessions_playing(request: Request) -> Response:
        return await _report_playback(request, stopped=False)

    @fastapi_app.post("/Sessions/Playing/Stopped")
    async def sessions_playing_stopped(request: Request) -> Response:
        return await _report_playback(request, stopped=True)

    # Playlists ------------------------------------------------------------

    def _split_ids(value: str | None) -> list[str]:
        return [part for part in (value or "").split(",") if part]

    @fastapi_app.post("/Playlists")
    async def create_playlist(request: Request) -> dict[str, Any]:
        user_id = await _authenticated_user(request)
        payload = await read_json(request) if await request.body() else {}
        if not isinstance(payload, dict):
            raise BadRequestError("Invalid JSON payload")
        # Older clients send the playlist fields as query parameters.
        for name in ("Name", "Ids"):
            value = query_value(request, name)
            if value and name not in payload:
                payload[name] = _split_ids(value) if name == "Ids" else value
        body = CreatePlaylist.model_validate(payload)
        service = get_catalog_service(fastapi_app)
        playlist_id = await service.create_playlist(user_id, body.name, body.ids)
        return {"Id": playlist_id}

    @fastapi_app.get("/Playlists/{playlist}/Items")
    async def playlist_items(playlist: str, request: Request) -> dict[str, Any]:
        user_id = await _authenticated_user(request)
        service = get_catalog_service(fastapi_app)
        response = await service.playlist_items(user_id, playlist, query_params(request))
        return response.to_payload()

    @fastapi_app.post("/Playlists/{playlist}/Items")
    async def playlist_add(playlist: str, request: Request) -> Response:
        await _authenticated_user(request)
        service = get_catalog_service(fastapi_app)
        await service.add_to_playlist(playlist, _split_ids(query_value(request, "ids")))
        return Response(status_code=204)

    @fastapi_app.delete("/Playlists/{playlist}/Items")
    async def playlist_remove(playlist: str, request: Request) -> Response:
        await _authenticated_user(request)
        service = get_catalog_service(fastapi_app)
        await service.remove_from_playlist(
            playlist, _split_ids(query_value(request, "entryIds"))
        )
        return Response(status_code=204)


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
