"""Parsing of Kodi-style ``.nfo`` sidecar files into :class:`Descriptor` values."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import BinaryIO

from .catalog import Actor, AudioDetails, Descriptor, StreamDetails, VideoDetails

logger = logging.getLogger(__name__)


class DescriptorError(ValueError):
    """Raised when a sidecar file is not well-formed XML."""


def load_descriptor(path: Path) -> Descriptor:
    """Open and parse the descriptor at ``path``.

    ``OSError`` propagates for missing or unreadable files.
    """

    with path.open("rb") as handle:
        return parse_descriptor(handle)


def parse_descriptor(source: BinaryIO | bytes) -> Descriptor:
    try:
        if isinstance(source, bytes):
            root = ET.fromstring(source)
        else:
            root = ET.parse(source).getroot()
    except ET.ParseError as exc:
        raise DescriptorError(f"Malformed descriptor: {exc}") from exc

    return Descriptor(
        title=_text(root, "title"),
        plot=_text(root, "plot"),
        tagline=_text(root, "tagline"),
        season=_text(root, "season"),
        episode=_text(root, "episode"),
        mpaa=_text(root, "mpaa"),
        rating=_parse_rating(root),
        genres=_texts(root, "genre"),
        tags=_texts(root, "tag"),
        studio=_text(root, "studio"),
        actors=tuple(_parse_actors(root)),
        year=_int(_text(root, "year")),
        premiered=_text(root, "premiered"),
        aired=_text(root, "aired"),
        stream_details=_parse_stream_details(root),
    )


def _text(node: ET.Element, tag: str) -> str:
    child = node.find(tag)
    if child is None or child.text is None:
        return ""
    return child.text.strip()


def _texts(node: ET.Element, tag: str) -> tuple[str, ...]:
    values: list[str] = []
    for child in node.findall(tag):
        text = (child.text or "").strip()
        if text:
            values.append(text)
    return tuple(values)


def _int(value: str) -> int:
    if not value:
        return 0
    try:
        return int(value)
    except ValueError:
        try:
            return int(float(value))
        except ValueError:
            logger.debug("Ignoring non-numeric descriptor value %r", value)
            return 0


def _float(value: str) -> float:
    if not value:
        return 0.0
    try:
        return float(value.replace(",", "."))
    except ValueError:
        logger.debug("Ignoring non-numeric descriptor value %r", value)
        return 0.0


def _parse_rating(root: ET.Element) -> float:
    direct = _float(_text(root, "rating"))
    if direct:
        return direct
    # Newer Kodi exports nest ratings per source; prefer the default one.
    ratings = root.findall("ratings/rating")
    for rating in ratings:
        if rating.get("default") == "true":
            return _float(_text(rating, "value"))
    if ratings:
        return _float(_text(ratings[0], "value"))
    return 0.0


def _parse_actors(root: ET.Element) -> list[Actor]:
    actors: list[Actor] = []
    for node in root.findall("actor"):
        name = _text(node, "name")
        if not name:
            continue
        actors.append(Actor(name=name, role=_text(node, "role"), thumb=_text(node, "thumb")))
    return actors


def _parse_stream_details(root: ET.Element) -> StreamDetails | None:
    details = root.find("fileinfo/streamdetails")
    if details is None:
        return None
    video = details.find("video")
    audio = details.find("audio")
    if video is None and audio is None:
        return None

    video_details = VideoDetails()
    if video is not None:
        video_details = VideoDetails(
            codec=_text(video, "codec"),
            bitrate=_int(_text(video, "bitrate")),
            width=_int(_text(video, "width")),
            height=_int(_text(video, "height")),
            frame_rate=_float(_text(video, "framerate")),
            duration_seconds=_int(_text(video, "durationinseconds")),
        )
    audio_details = AudioDetails()
    if audio is not None:
        audio_details = AudioDetails(
            codec=_text(audio, "codec"),
            bitrate=_int(_text(audio, "bitrate")),
            channels=_int(_text(audio, "channels")),
            language=_text(audio, "language"),
        )
    return StreamDetails(video=video_details, audio=audio_details)
