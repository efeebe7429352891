"""Filesystem scanning of Kodi-style media folders into library snapshots."""

from __future__ import annotations

import asyncio
import logging
import re
from collections import defaultdict
from contextlib import suppress
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Sequence

from ..catalog import Collection, CollectionKind, Episode, Item, Library, Season
from ..config import CollectionConfig
from ..identifiers import id_hash

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = frozenset({".mp4", ".m4v", ".mkv", ".avi", ".mov", ".webm"})
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".tbn")

_NAME_YEAR_RE = re.compile(r"^(?P<name>.+?)\s*\((?P<year>\d{4})\)\s*$")
_EPISODE_RE = re.compile(r"[Ss](?P<season>\d{1,3})[ ._-]?[Ee](?P<episode>\d{1,4})")


def stable_id(source_id: int, relative: Path | str) -> str:
    """Internal id derived from the collection and a path inside it."""

    return id_hash(f"{source_id}:{Path(relative).as_posix()}")


def split_name_year(directory_name: str) -> tuple[str, int]:
    """Split ``"Name (YYYY)"`` into its parts; the year is 0 when absent."""

    match = _NAME_YEAR_RE.match(directory_name)
    if match is None:
        return directory_name.strip(), 0
    return match.group("name").strip(), int(match.group("year"))


def _first_seen(path: Path) -> datetime:
    try:
        return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    except OSError:
        return datetime.now(timezone.utc)


def _visible_children(directory: Path) -> list[Path]:
    try:
        return sorted(
            (child for child in directory.iterdir() if not child.name.startswith(".")),
            key=lambda child: child.name.lower(),
        )
    except OSError as exc:
        logger.warning("Cannot list %s: %s", directory, exc)
        return []


def _find_image(files: Iterable[Path], stems: Sequence[str]) -> Path | None:
    by_name = {file.name.lower(): file for file in files}
    for stem in stems:
        for extension in IMAGE_EXTENSIONS:
            found = by_name.get(f"{stem.lower()}{extension}")
            if found is not None:
                return found
    return None


def _find_file(files: Iterable[Path], names: Sequence[str]) -> Path | None:
    by_name = {file.name.lower(): file for file in files}
    for name in names:
        found = by_name.get(name.lower())
        if found is not None:
            return found
    return None


def _relative(path: Path | None, root: Path) -> str:
    if path is None:
        return ""
    return path.relative_to(root).as_posix()


def scan_movie(config: CollectionConfig, movie_dir: Path) -> Item | None:
    files = [child for child in _visible_children(movie_dir) if child.is_file()]
    videos = [file for file in files if file.suffix.lower() in VIDEO_EXTENSIONS]
    if not videos:
        logger.debug("Skipping %s: no video file", movie_dir)
        return None
    video = videos[0]
    stem = video.stem
    name, year = split_name_year(movie_dir.name)
    poster = _find_image(files, ("poster", f"{stem}-poster", "folder", "cover"))
    fanart = _find_image(files, ("fanart", f"{stem}-fanart", "backdrop"))
    nfo = _find_file(files, (f"{stem}.nfo", "movie.nfo"))
    return Item(
        id=stable_id(config.source_id, movie_dir.relative_to(config.directory)),
        name=name,
        directory=movie_dir,
        first_seen=_first_seen(video),
        year=year,
        video=video.name,
        poster=_relative(poster, movie_dir),
        fanart=_relative(fanart, movie_dir),
        nfo_path=nfo,
    )


def _scan_episode(
    config: CollectionConfig, show_dir: Path, video: Path
) -> tuple[int, int, Episode] | None:
    match = _EPISODE_RE.search(video.stem)
    if match is None:
        logger.debug("Skipping %s: no season/episode marker", video)
        return None
    siblings = [child for child in _visible_children(video.parent) if child.is_file()]
    thumb = _find_image(siblings, (f"{video.stem}-thumb", f"{video.stem}"))
    nfo = _find_file(siblings, (f"{video.stem}.nfo",))
    relative = video.relative_to(show_dir)
    episode = Episode(
        id=stable_id(config.source_id, video.relative_to(config.directory)),
        name=video.stem,
        video=relative.as_posix(),
        first_seen=_first_seen(video),
        thumb=_relative(thumb, show_dir),
        nfo_path=nfo,
    )
    return int(match.group("season")), int(match.group("episode")), episode


def _season_poster(show_dir: Path, season_no: int, season_dirs: set[Path]) -> str:
    show_files = [child for child in _visible_children(show_dir) if child.is_file()]
    stems = [f"season{season_no:02d}-poster"]
    if season_no == 0:
        stems.insert(0, "season-specials-poster")
    poster = _find_image(show_files, stems)
    if poster is None:
        for season_dir in sorted(season_dirs):
            if season_dir == show_dir:
                continue
            season_files = [child for child in _visible_children(season_dir) if child.is_file()]
            poster = _find_image(season_files, ("poster", "folder"))
            if poster is not None:
                break
    return _relative(poster, show_dir)


def scan_show(config: CollectionConfig, show_dir: Path) -> Item | None:
    files = [child for child in _visible_children(show_dir) if child.is_file()]
    nfo = _find_file(files, ("tvshow.nfo",))

    found: dict[int, list[tuple[int, Episode]]] = defaultdict(list)
    season_dirs: dict[int, set[Path]] = defaultdict(set)
    for video in sorted(show_dir.rglob("*")):
        if video.suffix.lower() not in VIDEO_EXTENSIONS or not video.is_file():
            continue
        if any(part.startswith(".") for part in video.relative_to(show_dir).parts):
            continue
        scanned = _scan_episode(config, show_dir, video)
        if scanned is None:
            continue
        season_no, episode_no, episode = scanned
        found[season_no].append((episode_no, episode))
        season_dirs[season_no].add(video.parent)

    if nfo is None and not found:
        logger.debug("Skipping %s: neither tvshow.nfo nor episodes", show_dir)
        return None

    relative_show = show_dir.relative_to(config.directory)
    seasons = tuple(
        Season(
            id=stable_id(config.source_id, relative_show / f"season {season_no}"),
            season_no=season_no,
            episodes=tuple(
                episode for _, episode in sorted(found[season_no], key=lambda pair: pair[0])
            ),
            poster=_season_poster(show_dir, season_no, season_dirs[season_no]),
        )
        for season_no in sorted(found)
    )
    name, year = split_name_year(show_dir.name)
    poster = _find_image(files, ("poster", "folder", "cover"))
    fanart = _find_image(files, ("fanart", "backdrop"))
    first_seen = min(
        (episode.first_seen for season in seasons for episode in season.episodes),
        default=_first_seen(show_dir),
    )
    return Item(
        id=stable_id(config.source_id, relative_show),
        name=name,
        directory=show_dir,
        first_seen=first_seen,
        year=year,
        poster=_relative(poster, show_dir),
        fanart=_relative(fanart, show_dir),
        nfo_path=nfo,
        seasons=seasons,
    )


def scan_collection(config: CollectionConfig) -> Collection:
    kind = CollectionKind(config.kind)
    scanner = scan_movie if kind is CollectionKind.MOVIES else scan_show
    items: list[Item] = []
    if not config.directory.is_dir():
        logger.warning("Collection %s: %s is not a directory", config.name, config.directory)
    else:
        for child in _visible_children(config.directory):
            if not child.is_dir():
                continue
            item = scanner(config, child)
            if item is not None:
                items.append(item)
    logger.info("Collection %s: %d items", config.name, len(items))
    return Collection(
        name=config.name,
        kind=kind,
        source_id=config.source_id,
        directory=config.directory,
        items=tuple(items),
    )


def scan_library(configs: Sequence[CollectionConfig]) -> Library:
    """Build a fresh snapshot of every configured collection."""

    return Library(tuple(scan_collection(config) for config in configs))


class LibraryService:
    """Owns the current library snapshot and keeps it fresh in the background."""

    def __init__(
        self,
        collections: Sequence[CollectionConfig],
        *,
        rescan_interval: float = 900,
        library: Library | None = None,
    ):
        self._collections = tuple(collections)
        self._rescan_interval = rescan_interval
        self._library = library if library is not None else Library()
        self._refresh_task: asyncio.Task[None] | None = None

    @property
    def library(self) -> Library:
        """Current snapshot; callers keep the reference for a whole request."""

        return self._library

    async def start(self) -> None:
        """Perform the initial scan and launch the rescan loop."""

        await self.rescan()
        if self._refresh_task is None:
            self._refresh_task = asyncio.create_task(self._refresh_loop())

    async def stop(self) -> None:
        """Stop the background rescan loop."""

        if self._refresh_task is None:
            return
        self._refresh_task.cancel()
        with suppress(asyncio.CancelledError):
            await self._refresh_task
        self._refresh_task = None

    async def rescan(self) -> Library:
        """Scan every collection and publish the result as the new snapshot.

        A failing scan leaves the previous snapshot in place.
        """

        try:
            library = await asyncio.to_thread(scan_library, self._collections)
        except Exception as exc:
            logger.exception("Library scan failed, keeping previous snapshot: %s", exc)
            return self._library
        self._library = library
        logger.info(
            "Library scan finished: %d collections, %d items",
            len(library.collections),
            len(library),
        )
        return library

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._rescan_interval)
            try:
                await self.rescan()
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Scheduled rescan failed: %s", exc)
