"""Attach parsed descriptors to catalog entities and merge them into records."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Iterable

from ..catalog import Descriptor, Episode, Item, Library
from ..identifiers import id_hash
from ..models import BaseItem, NameIdPair, Person
from ..nfo import DescriptorError, load_descriptor

logger = logging.getLogger(__name__)

REDIRECT_TAG_PREFIX = "redirect_"

# First match wins, so the time-only format is tried before full dates.
DATE_FORMATS: tuple[str, ...] = (
    "%H:%M:%S",
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d %H:%M:%S",
    "%d %b %Y",
    "%d %b %Y %H:%M:%S",
)

GENRE_SYNONYMS: dict[str, str] = {
    "sci-fi": "Science Fiction",
    "scifi": "Science Fiction",
    "sf": "Science Fiction",
    "science-fiction": "Science Fiction",
    "kids": "Children",
    "doc": "Documentary",
    "documentaries": "Documentary",
    "musical": "Music",
    "rom-com": "Romance",
    "suspense": "Thriller",
    "tv movie": "TV Movie",
}

_GENRE_SPLIT_RE = re.compile(r"\s*[/&]\s*")

# Fields a series descriptor may contribute to its episodes.
INHERITABLE_FIELDS = frozenset({"genres", "studio", "actors"})


def normalize_genres(genres: Iterable[str]) -> list[str]:
    """Fold case and synonyms, keeping the first occurrence of each genre."""

    normalized: list[str] = []
    seen: set[str] = set()
    for raw in genres:
        for part in _GENRE_SPLIT_RE.split(raw):
            value = " ".join(part.split())
            if not value:
                continue
            folded = GENRE_SYNONYMS.get(value.casefold())
            if folded is None:
                folded = value if not value.islower() and not value.isupper() else value.title()
            key = folded.casefold()
            if key in seen:
                continue
            seen.add(key)
            normalized.append(folded)
    return normalized


def parse_date(value: str) -> datetime | None:
    for fmt in DATE_FORMATS:
        try:
            parsed = datetime.strptime(value, fmt)
        except ValueError:
            continue
        return parsed.replace(tzinfo=timezone.utc)
    logger.debug("Unparseable descriptor date %r", value)
    return None


def _parse_number(value: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        return 0


class MetadataEnricher:
    """Lazily loads descriptors into a library snapshot and applies them."""

    def attach(self, library: Library, entity: Item | Episode) -> Descriptor | None:
        """Return the entity's descriptor, parsing it on first access.

        Missing or malformed files leave the entity without a descriptor; the
        next access tries again.
        """

        cached = library.descriptors.get(entity.id)
        if cached is not None:
            return cached
        if entity.nfo_path is None:
            return None
        try:
            descriptor = load_descriptor(entity.nfo_path)
        except (OSError, DescriptorError) as exc:
            logger.debug("No descriptor for %s at %s: %s", entity.id, entity.nfo_path, exc)
            return None
        return library.descriptors.publish(entity.id, descriptor)

    def merge(
        self,
        record: BaseItem,
        descriptor: Descriptor | None,
        *,
        only: frozenset[str] | None = None,
    ) -> BaseItem:
        """Overlay non-empty descriptor fields onto ``record`` in place.

        ``only`` restricts the merge to the named descriptor fields.
        """

        if descriptor is None:
            return record

        def wanted(name: str) -> bool:
            return only is None or name in only

        if wanted("title") and descriptor.title:
            record.name = descriptor.title
        if wanted("plot") and descriptor.plot:
            record.overview = descriptor.plot
        if wanted("tagline") and descriptor.tagline:
            record.taglines = [descriptor.tagline]

        if wanted("season") and descriptor.season:
            season_no = _parse_number(descriptor.season)
            if season_no:
                record.parent_index_number = season_no
                record.season_name = f"Season {season_no}"
        if wanted("episode") and descriptor.episode:
            episode_no = _parse_number(descriptor.episode)
            if episode_no:
                record.index_number = episode_no
        if wanted("sort_name"):
            if record.parent_index_number and record.index_number:
                record.sort_name = (
                    f"{record.parent_index_number:03d} - "
                    f"{record.index_number:04d} - {record.name}"
                )
            elif not record.sort_name:
                record.sort_name = record.name

        if wanted("mpaa") and descriptor.mpaa:
            record.official_rating = descriptor.mpaa
        if wanted("rating") and descriptor.rating:
            record.community_rating = round(descriptor.rating, 1)

        if wanted("genres") and descriptor.genres:
            genres = normalize_genres(descriptor.genres)
            record.genres = genres
            record.genre_items = [NameIdPair(name=genre, id=id_hash(genre)) for genre in genres]
        if wanted("studio") and descriptor.studio:
            record.studios = [
                NameIdPair(name=descriptor.studio, id=id_hash(descriptor.studio))
            ]
        if wanted("actors") and descriptor.actors:
            record.people = [
                Person(
                    name=actor.name,
                    id=id_hash(actor.name),
                    role=actor.role or None,
                    primary_image_tag=(
                        REDIRECT_TAG_PREFIX + actor.thumb if actor.thumb else None
                    ),
                )
                for actor in descriptor.actors
            ]

        if wanted("year") and descriptor.year:
            record.production_year = descriptor.year
        if wanted("premiered") and descriptor.premiered:
            premiered = parse_date(descriptor.premiered)
            if premiered is not None:
                record.premiere_date = premiered
        if wanted("aired") and descriptor.aired:
            aired = parse_date(descriptor.aired)
            if aired is not None:
                record.premiere_date = aired
        return record

    def merge_episode(
        self,
        record: BaseItem,
        show_descriptor: Descriptor | None,
        episode_descriptor: Descriptor | None,
    ) -> BaseItem:
        """Apply series-level defaults, then the episode's own descriptor.

        Ratings never survive on an episode record, whichever pass set them.
        """

        self.merge(record, show_descriptor, only=INHERITABLE_FIELDS)
        self.merge(record, episode_descriptor)
        record.official_rating = None
        record.community_rating = None
        return record
