"""
Persistent store of Matrix room <-> Discord channel links.
"""

from typing import List, Optional
import logging

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..models.room_link import RoomLinkRow
from ..models.records import ChannelLink, LinkAttributes, LinkPolicy, Provisioning
from ..utils import TimedCache

logger = logging.getLogger(__name__)

DEFAULT_CACHE_LIFETIME = 30.0


class RoomStore:
    """
    Reads and writes ChannelLink records.

    Lookups by Matrix room id are served from a short-lived cache which is
    dropped for a room whenever a link of that room is written or removed.
    Every returned record is a private copy, so callers can mutate it freely
    and write it back with upsert_link.
    """

    def __init__(self, session_factory: sessionmaker, cache_lifetime: float = DEFAULT_CACHE_LIFETIME):
        self._session_factory = session_factory
        self._room_cache: TimedCache[str, List[ChannelLink]] = TimedCache(cache_lifetime)

    def count_links(self) -> int:
        """Number of links that have both a Matrix room and a Discord channel."""
        with self._session_factory() as session:
            return session.query(func.count(RoomLinkRow.id)).filter(
                RoomLinkRow.matrix_room_id.isnot(None),
                RoomLinkRow.remote_room_id.isnot(None)
            ).scalar() or 0

    def get_all_links(self) -> List[ChannelLink]:
        with self._session_factory() as session:
            return [_to_record(row) for row in session.query(RoomLinkRow).all()]

    def get_links_by_matrix_room(self, room_id: str) -> List[ChannelLink]:
        cached = self._room_cache.get(room_id)
        if cached is not None:
            logger.debug(f"Room link cache hit for {room_id}")
            return [link.model_copy(deep=True) for link in cached]

        with self._session_factory() as session:
            rows = session.query(RoomLinkRow).filter(
                RoomLinkRow.matrix_room_id == room_id,
                RoomLinkRow.remote_room_id.isnot(None)
            ).all()
            links = [_to_record(row) for row in rows]

        if links:
            self._room_cache.set(room_id, [link.model_copy(deep=True) for link in links])
        return links

    def get_links_by_channel(self, channel_id: str, plumbed: Optional[bool] = None) -> List[ChannelLink]:
        with self._session_factory() as session:
            query = session.query(RoomLinkRow).filter(
                RoomLinkRow.channel_id == channel_id,
                RoomLinkRow.matrix_room_id.isnot(None)
            )
            if plumbed is not None:
                query = query.filter(RoomLinkRow.plumbed.is_(plumbed))
            return [_to_record(row) for row in query.all()]

    def get_links_by_guild(self, guild_id: str) -> List[ChannelLink]:
        with self._session_factory() as session:
            rows = session.query(RoomLinkRow).filter(
                RoomLinkRow.guild_id == guild_id,
                RoomLinkRow.matrix_room_id.isnot(None)
            ).all()
            return [_to_record(row) for row in rows]

    def upsert_link(self, link: ChannelLink) -> None:
        """Insert the link, or overwrite every stored field of the link with the same id."""
        with self._session_factory() as session:
            try:
                row = session.get(RoomLinkRow, link.id)
                if row is None:
                    row = RoomLinkRow(id=link.id)
                    session.add(row)
                    logger.debug(f"Created new room link {link.id}")
                elif row.matrix_room_id and row.matrix_room_id != link.matrix_room_id:
                    self._room_cache.delete(row.matrix_room_id)
                _apply_record(row, link)
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Failed to upsert room link {link.id}: {e}")
                raise
        if link.matrix_room_id:
            self._room_cache.delete(link.matrix_room_id)

    def link_rooms(self, matrix_room_id: str, link: ChannelLink) -> ChannelLink:
        """Attach link to a Matrix room and store it as a new entry."""
        link.matrix_room_id = matrix_room_id
        self.upsert_link(link)
        logger.info(f"Linked {matrix_room_id} to {link.remote_room_id}")
        return link

    def remove_links_by_matrix_room(self, room_id: str) -> int:
        self._room_cache.delete(room_id)
        with self._session_factory() as session:
            return self._delete(session, session.query(RoomLinkRow).filter(RoomLinkRow.matrix_room_id == room_id))

    def remove_links_by_remote_room(self, remote_room_id: str) -> int:
        with self._session_factory() as session:
            query = session.query(RoomLinkRow).filter(RoomLinkRow.remote_room_id == remote_room_id)
            for row in query.all():
                if row.matrix_room_id:
                    self._room_cache.delete(row.matrix_room_id)
            return self._delete(session, query)

    def _delete(self, session: Session, query) -> int:
        try:
            removed = query.delete(synchronize_session=False)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to remove room links: {e}")
            raise
        logger.debug(f"Removed {removed} room link(s)")
        return removed


def _to_record(row: RoomLinkRow) -> ChannelLink:
    return ChannelLink(
        id=row.id,
        matrix_room_id=row.matrix_room_id,
        remote_room_id=row.remote_room_id,
        guild_id=row.guild_id,
        channel_id=row.channel_id,
        attributes=LinkAttributes(
            name=row.name,
            topic=row.topic,
            icon_url=row.icon_url,
            icon_url_mxc=row.icon_url_mxc,
            channel_type=row.channel_type,
        ),
        policy=LinkPolicy(
            update_name=bool(row.update_name),
            update_topic=bool(row.update_topic),
            update_icon=bool(row.update_icon),
        ),
        provisioning=Provisioning.MANUAL if row.plumbed else Provisioning.AUTO,
    )


def _apply_record(row: RoomLinkRow, link: ChannelLink) -> None:
    row.matrix_room_id = link.matrix_room_id
    row.remote_room_id = link.remote_room_id
    row.guild_id = link.guild_id
    row.channel_id = link.channel_id
    row.name = link.attributes.name
    row.topic = link.attributes.topic
    row.icon_url = link.attributes.icon_url
    row.icon_url_mxc = link.attributes.icon_url_mxc
    row.channel_type = link.attributes.channel_type
    row.update_name = link.policy.update_name
    row.update_topic = link.policy.update_topic
    row.update_icon = link.policy.update_icon
    row.plumbed = link.plumbed
