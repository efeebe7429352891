"""Persistence of user playlists."""

from __future__ import annotations

import logging
import uuid
from typing import Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ..catalog import PlaylistEntryView, PlaylistView
from ..db_models import PlaylistEntry, PlaylistRecord
from ..errors import NotFoundError

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


def _to_view(record: PlaylistRecord) -> PlaylistView:
    return PlaylistView(
        id=record.id,
        name=record.name,
        entries=tuple(
            PlaylistEntryView(entry_id=entry.id, item_id=entry.item_id)
            for entry in record.entries
        ),
    )


class PlaylistRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(
        self, user_id: str, name: str, item_ids: Sequence[str] = ()
    ) -> PlaylistView:
        record = PlaylistRecord(id=_new_id(), user_id=user_id, name=name)
        record.entries = [
            PlaylistEntry(id=_new_id(), item_id=item_id, position=position)
            for position, item_id in enumerate(item_ids)
        ]
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()
        logger.info("Created playlist %s (%s) with %d items", record.id, name, len(item_ids))
        return _to_view(record)

    async def list_for_user(self, user_id: str) -> list[PlaylistView]:
        async with self._session_factory() as session:
            stmt = (
                select(PlaylistRecord)
                .where(PlaylistRecord.user_id == user_id)
                .options(selectinload(PlaylistRecord.entries))
                .order_by(PlaylistRecord.created_at, PlaylistRecord.name)
            )
            records = (await session.execute(stmt)).scalars().all()
            return [_to_view(record) for record in records]

    async def get(self, playlist_id: str) -> PlaylistView:
        async with self._session_factory() as session:
            record = await self._load(session, playlist_id)
            return _to_view(record)

    async def add_items(self, playlist_id: str, item_ids: Sequence[str]) -> PlaylistView:
        async with self._session_factory() as session:
            record = await self._load(session, playlist_id)
            next_position = await session.scalar(
                select(func.coalesce(func.max(PlaylistEntry.position) + 1, 0)).where(
                    PlaylistEntry.playlist_id == playlist_id
                )
            )
            for offset, item_id in enumerate(item_ids):
                record.entries.append(
                    PlaylistEntry(
                        id=_new_id(),
                        item_id=item_id,
                        position=(next_position or 0) + offset,
                    )
                )
            await session.commit()
            return _to_view(record)

    async def remove_entries(
        self, playlist_id: str, entry_ids: Sequence[str]
    ) -> PlaylistView:
        async with self._session_factory() as session:
            await self._load(session, playlist_id)
            await session.execute(
                delete(PlaylistEntry).where(
                    PlaylistEntry.playlist_id == playlist_id,
                    PlaylistEntry.id.in_(list(entry_ids)),
                )
            )
            await session.commit()
        return await self.get(playlist_id)

    @staticmethod
    async def _load(session: AsyncSession, playlist_id: str) -> PlaylistRecord:
        stmt = (
            select(PlaylistRecord)
            .where(PlaylistRecord.id == playlist_id)
            .options(selectinload(PlaylistRecord.entries))
        )
        record = (await session.execute(stmt)).scalar_one_or_none()
        if record is None:
            raise NotFoundError("Playlist not found")
        return record
