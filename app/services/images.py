"""Resolution of image tags and media ids to redirects or local files."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError

from ..catalog import Library
from ..errors import NotFoundError
from ..identifiers import EntityKind, decode_id, id_hash
from .enricher import REDIRECT_TAG_PREFIX

logger = logging.getLogger(__name__)

FILE_TAG_PREFIX = "file_"
IMAGE_CACHE_CONTROL = "max-age=2592000"


class ImageTarget(str, Enum):
    REDIRECT = "redirect"
    FILE = "file"


@dataclass(frozen=True, slots=True)
class ImageResolution:
    """Where an image request should be answered from.

    ``quality`` is set for posters that go through the re-encoding transform.
    """

    target: ImageTarget
    location: str
    quality: int | None = None


class ImageService:
    """Re-encodes artwork at reduced JPEG quality, caching results on disk."""

    def __init__(self, cache_dir: Path):
        self.cache_dir = cache_dir

    def cache_path(self, path: Path, quality: int) -> Path:
        mtime = path.stat().st_mtime_ns
        return self.cache_dir / f"{id_hash(f'{path}:{mtime}:{quality}')}.jpg"

    def open_transformed(self, path: Path, quality: int) -> Path:
        """Return a file holding ``path`` at ``quality``; 0 keeps the original.

        Images Pillow cannot decode are served unchanged.
        """

        if quality <= 0:
            return path
        try:
            target = self.cache_path(path, quality)
        except OSError as exc:
            raise NotFoundError("Image not found") from exc
        if target.exists():
            return target

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        try:
            with Image.open(path) as image:
                converted = ImageOps.exif_transpose(image).convert("RGB")
        except (UnidentifiedImageError, OSError) as exc:
            logger.warning("Could not re-encode %s, serving original: %s", path, exc)
            return path

        handle, temp_name = tempfile.mkstemp(dir=self.cache_dir, suffix=".tmp")
        try:
            with os.fdopen(handle, "wb") as output:
                converted.save(output, format="JPEG", quality=quality, optimize=True)
            os.replace(temp_name, target)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise
        return target

    async def open_transformed_async(self, path: Path, quality: int) -> Path:
        return await asyncio.to_thread(self.open_transformed, path, quality)


class ImageResolver:
    """Maps ``/Items/{id}/Images/{type}`` requests onto the library snapshot."""

    def __init__(self, library: Library, *, poster_quality: int):
        self.library = library
        self.poster_quality = poster_quality

    def resolve(self, item_id: str, image_type: str, tag: str | None = None) -> ImageResolution:
        # Tagged images are addressed by the tag alone.
        if tag and tag.startswith(REDIRECT_TAG_PREFIX):
            return ImageResolution(ImageTarget.REDIRECT, tag[len(REDIRECT_TAG_PREFIX):])
        if tag and tag.startswith(FILE_TAG_PREFIX):
            return ImageResolution(
                ImageTarget.FILE, self._inside_library(tag[len(FILE_TAG_PREFIX):])
            )

        ref = decode_id(item_id)
        if ref.kind is EntityKind.SEASON:
            found_season = self.library.find_season(ref.internal_id)
            if found_season is None:
                raise NotFoundError("Could not find season")
            _, item, season = found_season
            if image_type == "Primary":
                return self._local(item.directory, season.poster, quality=self.poster_quality)
        elif ref.kind is EntityKind.EPISODE:
            found_episode = self.library.find_episode(ref.internal_id)
            if found_episode is None:
                raise NotFoundError("Could not find episode")
            _, item, _, episode = found_episode
            if image_type in ("Primary", "Thumb"):
                return self._local(item.directory, episode.thumb)
        elif ref.kind is EntityKind.ITEM:
            found = self.library.find_item(ref.internal_id)
            if found is None:
                raise NotFoundError("Item not found")
            _, item = found
            if image_type == "Primary":
                return self._local(item.directory, item.poster, quality=self.poster_quality)
            if image_type == "Backdrop":
                return self._local(item.directory, item.fanart)

        logger.info("Unknown image type %s requested for %s", image_type, item_id)
        raise NotFoundError("Item image not found")

    def _inside_library(self, location: str) -> str:
        """Only files below a collection directory may be served by tag."""

        candidate = Path(location).resolve()
        for collection in self.library.list_collections():
            if candidate.is_relative_to(collection.directory.resolve()):
                return str(candidate)
        logger.warning("Refusing image tag outside the library: %s", location)
        raise NotFoundError("Item image not found")

    @staticmethod
    def _local(directory: Path, relative: str, *, quality: int | None = None) -> ImageResolution:
        if not relative:
            raise NotFoundError("Item image not found")
        return ImageResolution(ImageTarget.FILE, str(directory / relative), quality)


def resolve_stream(library: Library, item_id: str) -> Path:
    """Local video file for a movie or an ``episode_`` id."""

    ref = decode_id(item_id)
    if ref.kind is EntityKind.EPISODE:
        found_episode = library.find_episode(ref.internal_id)
        if found_episode is None:
            raise NotFoundError("Could not find episode")
        _, item, _, episode = found_episode
        return item.directory / episode.video
    if ref.kind is EntityKind.ITEM:
        found = library.find_item(ref.internal_id)
        if found is None or not found[1].video:
            raise NotFoundError("Item not found")
        _, item = found
        return item.directory / item.video
    raise NotFoundError("Item not found")
