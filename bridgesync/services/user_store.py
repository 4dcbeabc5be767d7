"""
Persistent store of Discord user <-> Matrix ghost links.
"""

from typing import List, Optional
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..models.user_link import UserLinkRow, GuildNickRow
from ..models.records import UserLink
from ..utils import TimedCache

logger = logging.getLogger(__name__)

DEFAULT_CACHE_LIFETIME = 30.0


class UserStore:
    """Reads and writes UserLink records, caching lookups by Discord user id."""

    def __init__(self, session_factory: sessionmaker, cache_lifetime: float = DEFAULT_CACHE_LIFETIME):
        self._session_factory = session_factory
        self._remote_user_cache: TimedCache[str, UserLink] = TimedCache(cache_lifetime)

    def get_user_link(self, remote_user_id: str) -> Optional[UserLink]:
        cached = self._remote_user_cache.get(remote_user_id)
        if cached is not None:
            return cached.model_copy(deep=True)

        with self._session_factory() as session:
            row = session.query(UserLinkRow).filter(
                UserLinkRow.remote_user_id == remote_user_id
            ).order_by(UserLinkRow.id).first()
            if row is None:
                return None
            nicks = session.query(GuildNickRow).filter(GuildNickRow.remote_user_id == remote_user_id).all()
            user = _to_record(row, nicks)

        self._remote_user_cache.set(remote_user_id, user.model_copy(deep=True))
        return user

    def get_user_links_by_matrix_id(self, matrix_user_id: str) -> List[UserLink]:
        with self._session_factory() as session:
            rows = session.query(UserLinkRow).filter(UserLinkRow.matrix_user_id == matrix_user_id).all()
            result = []
            for row in rows:
                nicks = session.query(GuildNickRow).filter(GuildNickRow.remote_user_id == row.remote_user_id).all()
                result.append(_to_record(row, nicks))
            return result

    def link_users(self, matrix_user_id: str, remote_user_id: str) -> UserLink:
        """Create the link between a ghost and a Discord user; an existing link is kept as is."""
        with self._session_factory() as session:
            try:
                session.add(UserLinkRow(matrix_user_id=matrix_user_id, remote_user_id=remote_user_id))
                session.commit()
                logger.info(f"Linked {matrix_user_id} to Discord user {remote_user_id}")
            except IntegrityError as e:
                session.rollback()
                logger.debug(f"User link {matrix_user_id} <-> {remote_user_id} probably exists: {e}")
        self._remote_user_cache.delete(remote_user_id)
        return self.get_user_link(remote_user_id) or UserLink(
            matrix_user_id=matrix_user_id, remote_user_id=remote_user_id
        )

    def set_user_link(self, user: UserLink) -> None:
        """Persist profile fields and guild nicknames. Nicknames are upserted, never removed."""
        self._remote_user_cache.delete(user.remote_user_id)
        with self._session_factory() as session:
            try:
                row = session.query(UserLinkRow).filter(
                    UserLinkRow.remote_user_id == user.remote_user_id,
                    UserLinkRow.matrix_user_id == user.matrix_user_id
                ).first()
                if row is None:
                    row = UserLinkRow(matrix_user_id=user.matrix_user_id, remote_user_id=user.remote_user_id)
                    session.add(row)
                row.display_name = user.display_name
                row.avatar_url = user.avatar_url
                row.avatar_url_mxc = user.avatar_url_mxc

                existing = {
                    nick.guild_id: nick for nick in
                    session.query(GuildNickRow).filter(GuildNickRow.remote_user_id == user.remote_user_id).all()
                }
                for guild_id, nick in user.guild_nicks.items():
                    nick_row = existing.get(guild_id)
                    if nick_row is None:
                        session.add(GuildNickRow(remote_user_id=user.remote_user_id, guild_id=guild_id, nick=nick))
                    elif nick_row.nick != nick:
                        nick_row.nick = nick
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Failed to store user link for {user.remote_user_id}: {e}")
                raise
        self._remote_user_cache.delete(user.remote_user_id)


def _to_record(row: UserLinkRow, nicks: List[GuildNickRow]) -> UserLink:
    return UserLink(
        matrix_user_id=row.matrix_user_id,
        remote_user_id=row.remote_user_id,
        display_name=row.display_name,
        avatar_url=row.avatar_url,
        avatar_url_mxc=row.avatar_url_mxc,
        guild_nicks={nick.guild_id: nick.nick for nick in nicks if nick.nick is not None},
    )
