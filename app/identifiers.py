"""Opaque identifier encoding shared by every protocol-facing component.

External ids have the shape ``<prefix>_<internal id>``. Plain catalog items
(movies and series) carry no prefix and are addressed by their internal id.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum

from .errors import UnknownIdPrefixError

ID_SEPARATOR = "_"


class EntityKind(str, Enum):
    """Kinds of entities addressable through an external id."""

    ITEM = "item"
    COLLECTION = "collection"
    COLLECTION_PLAYLIST = "collectionplaylist"
    PLAYLIST = "playlist"
    SEASON = "season"
    EPISODE = "episode"

    @property
    def prefixed(self) -> bool:
        return self is not EntityKind.ITEM


_KINDS_BY_PREFIX: dict[str, EntityKind] = {
    kind.value: kind for kind in EntityKind if kind.prefixed
}


@dataclass(frozen=True, slots=True)
class EntityRef:
    """Decoded form of an external id."""

    kind: EntityKind
    internal_id: str

    @property
    def external_id(self) -> str:
        return encode_id(self.kind, self.internal_id)


def encode_id(kind: EntityKind, internal_id: str | int) -> str:
    """Return the external id for ``internal_id`` of the given kind."""

    if not kind.prefixed:
        return str(internal_id)
    return f"{kind.value}{ID_SEPARATOR}{internal_id}"


def decode_id(external_id: str) -> EntityRef:
    """Split an external id into its kind and internal id.

    The first separator delimits the prefix, so internal ids of prefixed kinds
    may themselves contain separators. Raises :class:`UnknownIdPrefixError`
    when the prefix is not one this server hands out.
    """

    prefix, separator, remainder = external_id.partition(ID_SEPARATOR)
    if not separator:
        return EntityRef(EntityKind.ITEM, external_id)
    kind = _KINDS_BY_PREFIX.get(prefix)
    if kind is None:
        raise UnknownIdPrefixError(prefix)
    return EntityRef(kind, remainder)


def id_hash(value: str) -> str:
    """Deterministic 32 character hex token for ``value``."""

    return hashlib.md5(value.encode("utf-8"), usedforsecurity=False).hexdigest()


def entity_tag(external_id: str) -> str:
    """Change token clients use to cache the record of ``external_id``."""

    return id_hash(external_id)
