"""Access tokens and playback positions persisted with SQLAlchemy."""

from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime, timezone
from typing import Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import AccessToken, PlayState
from ..errors import UnauthorizedError

logger = logging.getLogger(__name__)

TOKEN_HEADERS = ("x-emby-token", "x-mediabrowser-token")
AUTHORIZATION_HEADERS = ("x-emby-authorization", "authorization")

# Fraction of the runtime after which a stopped item counts as watched.
PLAYED_THRESHOLD = 0.9

_AUTH_FIELD_RE = re.compile(r'(\w+)="([^"]*)"')


def parse_authorization(value: str) -> dict[str, str]:
    """Parse ``MediaBrowser Client="x", Token="y"`` style header values."""

    return {key.lower(): field for key, field in _AUTH_FIELD_RE.findall(value)}


def extract_token(headers: Mapping[str, str], query: Mapping[str, str]) -> str | None:
    """Find the access token a client sent, in any of the accepted places."""

    lowered = {key.lower(): value for key, value in headers.items()}
    for name in TOKEN_HEADERS:
        token = lowered.get(name)
        if token:
            return token
    for name in AUTHORIZATION_HEADERS:
        value = lowered.get(name)
        if value:
            token = parse_authorization(value).get("token")
            if token:
                return token
    for key, value in query.items():
        if key.lower() == "api_key" and value:
            return value
    return None


class SessionStore:
    """Issues and validates access tokens for the single library user."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        user_id: str,
        user_name: str,
    ):
        self._session_factory = session_factory
        self.user_id = user_id
        self.user_name = user_name

    async def authenticate(
        self,
        username: str,
        *,
        device_id: str | None = None,
        device_name: str | None = None,
        client: str | None = None,
    ) -> AccessToken:
        """Issue a new token. Any username and password are accepted."""

        if username and username != self.user_name:
            logger.info("Login as %r mapped to the library user %r", username, self.user_name)
        record = AccessToken(
            token=secrets.token_hex(16),
            user_id=self.user_id,
            device_id=device_id,
            device_name=device_name,
            client=client,
        )
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()
        return record

    async def validate(self, token: str | None) -> AccessToken:
        """Return the stored token or raise :class:`UnauthorizedError`."""

        if not token:
            raise UnauthorizedError("Missing access token")
        async with self._session_factory() as session:
            record = await session.get(AccessToken, token)
            if record is None:
                raise UnauthorizedError("Unknown access token")
            record.last_seen_at = datetime.now(timezone.utc)
            await session.commit()
        return record


class PlayStateRepository:
    """Stores the last reported position per user and item."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record(
        self,
        user_id: str,
        item_id: str,
        position_ticks: int,
        *,
        stopped: bool = False,
        run_time_ticks: int | None = None,
    ) -> PlayState:
        """Store a reported position.

        A stop at or past ``PLAYED_THRESHOLD`` of the runtime marks the item
        played and clears its position, which takes it off the resume list.
        Only such stops add to the play count.
        """

        finished = (
            stopped
            and bool(run_time_ticks)
            and position_ticks >= run_time_ticks * PLAYED_THRESHOLD
        )
        async with self._session_factory() as session:
            stmt = select(PlayState).where(
                PlayState.user_id == user_id, PlayState.item_id == item_id
            )
            state = (await session.execute(stmt)).scalar_one_or_none()
            if state is None:
                state = PlayState(
                    user_id=user_id,
                    item_id=item_id,
                    position_ticks=0,
                    play_count=0,
                    played=False,
                )
                session.add(state)
            if finished:
                state.position_ticks = 0
                state.played = True
                state.play_count = (state.play_count or 0) + 1
            else:
                state.position_ticks = position_ticks
            state.updated_at = datetime.now(timezone.utc)
            await session.commit()
        logger.debug(
            "Play state %s/%s at %d seconds%s",
            user_id,
            item_id,
            position_ticks // 10_000_000,
            " (played)" if finished else "",
        )
        return state

    async def get(self, user_id: str, item_id: str) -> PlayState | None:
        async with self._session_factory() as session:
            stmt = select(PlayState).where(
                PlayState.user_id == user_id, PlayState.item_id == item_id
            )
            return (await session.execute(stmt)).scalar_one_or_none()

    async def resumable(self, user_id: str) -> list[PlayState]:
        """Items with a stored non-zero position, most recent first."""

        async with self._session_factory() as session:
            stmt = (
                select(PlayState)
                .where(PlayState.user_id == user_id, PlayState.position_ticks > 0)
                .order_by(PlayState.updated_at.desc(), PlayState.id.desc())
            )
            return list((await session.execute(stmt)).scalars().all())
