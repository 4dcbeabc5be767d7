"""
Tests for the room and user link stores.
"""

import pytest

from bridgesync.models.room_link import RoomLinkRow
from bridgesync.models.records import Provisioning, UserLink
from bridgesync.services.room_store import RoomStore

from factories import make_link


class TestRoomStore:
    """Room link persistence."""

    def test_upsert_and_lookup(self, room_store):
        link = make_link(name="General", topic="Chat")
        room_store.upsert_link(link)

        by_room = room_store.get_links_by_matrix_room("!room:localhost")
        by_channel = room_store.get_links_by_channel("c1")

        assert [found.id for found in by_room] == [link.id]
        assert [found.id for found in by_channel] == [link.id]
        assert by_room[0].attributes.name == "General"
        assert by_room[0].policy.update_name is True
        assert by_room[0].provisioning is Provisioning.AUTO

    def test_upsert_overwrites_existing(self, room_store):
        link = make_link()
        room_store.upsert_link(link)
        link.attributes.topic = "New topic"
        room_store.upsert_link(link)

        links = room_store.get_all_links()
        assert len(links) == 1
        assert links[0].attributes.topic == "New topic"

    def test_returned_links_are_copies(self, room_store):
        room_store.upsert_link(make_link(name="General"))

        first = room_store.get_links_by_matrix_room("!room:localhost")
        first[0].attributes.name = "changed locally"
        second = room_store.get_links_by_matrix_room("!room:localhost")

        assert second[0].attributes.name == "General"

    def test_write_invalidates_room_cache(self, room_store):
        link = make_link(name="General")
        room_store.upsert_link(link)
        room_store.get_links_by_matrix_room("!room:localhost")

        link.attributes.name = "Renamed"
        room_store.upsert_link(link)

        assert room_store.get_links_by_matrix_room("!room:localhost")[0].attributes.name == "Renamed"

    def test_cached_reads_expire(self, session_factory):
        fresh = RoomStore(session_factory, cache_lifetime=0)
        cached = RoomStore(session_factory, cache_lifetime=30)
        fresh.upsert_link(make_link(name="General"))
        fresh.get_links_by_matrix_room("!room:localhost")
        cached.get_links_by_matrix_room("!room:localhost")

        with session_factory() as session:
            session.query(RoomLinkRow).update({"name": "Written elsewhere"})
            session.commit()

        assert fresh.get_links_by_matrix_room("!room:localhost")[0].attributes.name == "Written elsewhere"
        assert cached.get_links_by_matrix_room("!room:localhost")[0].attributes.name == "General"

    def test_plumbed_filter(self, room_store):
        room_store.upsert_link(make_link(room_id="!auto:localhost"))
        room_store.upsert_link(make_link(room_id="!manual:localhost", provisioning=Provisioning.MANUAL))

        plumbed = room_store.get_links_by_channel("c1", plumbed=True)
        auto = room_store.get_links_by_channel("c1", plumbed=False)

        assert [link.matrix_room_id for link in plumbed] == ["!manual:localhost"]
        assert plumbed[0].plumbed is True
        assert [link.matrix_room_id for link in auto] == ["!auto:localhost"]

    def test_links_by_guild_and_count(self, room_store):
        room_store.upsert_link(make_link(room_id="!a:localhost", channel_id="c1"))
        room_store.upsert_link(make_link(room_id="!b:localhost", channel_id="c2"))
        room_store.upsert_link(make_link(room_id="!c:localhost", channel_id="c3", guild_id="g2"))

        assert sorted(link.matrix_room_id for link in room_store.get_links_by_guild("g1")) == ["!a:localhost", "!b:localhost"]
        assert room_store.count_links() == 3

    def test_link_rooms(self, room_store):
        link = make_link(room_id=None)

        linked = room_store.link_rooms("!new:localhost", link)

        assert linked.matrix_room_id == "!new:localhost"
        assert room_store.get_links_by_matrix_room("!new:localhost")[0].id == link.id

    def test_remove_by_matrix_room(self, room_store):
        room_store.upsert_link(make_link(room_id="!a:localhost"))
        room_store.upsert_link(make_link(room_id="!b:localhost"))
        room_store.get_links_by_matrix_room("!a:localhost")

        assert room_store.remove_links_by_matrix_room("!a:localhost") == 1

        assert room_store.get_links_by_matrix_room("!a:localhost") == []
        assert len(room_store.get_links_by_channel("c1")) == 1

    def test_remove_by_remote_room(self, room_store):
        room_store.upsert_link(make_link(room_id="!a:localhost"))
        room_store.upsert_link(make_link(room_id="!b:localhost"))

        assert room_store.remove_links_by_remote_room("discord_g1_c1") == 2
        assert room_store.get_all_links() == []

    def test_room_channel_pair_is_unique(self, room_store):
        from sqlalchemy.exc import IntegrityError

        room_store.upsert_link(make_link())
        with pytest.raises(IntegrityError):
            room_store.upsert_link(make_link())


class TestUserStore:
    """User link persistence."""

    def test_unknown_user(self, user_store):
        assert user_store.get_user_link("u1") is None

    def test_link_users_is_idempotent(self, user_store):
        first = user_store.link_users("@_discord_u1:localhost", "u1")
        second = user_store.link_users("@_discord_u1:localhost", "u1")

        assert first.remote_user_id == "u1"
        assert second.matrix_user_id == "@_discord_u1:localhost"
        assert len(user_store.get_user_links_by_matrix_id("@_discord_u1:localhost")) == 1

    def test_set_user_link_updates_profile(self, user_store):
        user_store.link_users("@_discord_u1:localhost", "u1")
        user = user_store.get_user_link("u1")
        user.display_name = "alice#1234"
        user.avatar_url_mxc = "mxc://localhost/a"

        user_store.set_user_link(user)

        stored = user_store.get_user_link("u1")
        assert stored.display_name == "alice#1234"
        assert stored.avatar_url_mxc == "mxc://localhost/a"

    def test_guild_nicks_are_never_removed(self, user_store):
        user = UserLink(matrix_user_id="@_discord_u1:localhost", remote_user_id="u1",
                        guild_nicks={"g1": "Ali", "g2": "Al"})
        user_store.set_user_link(user)

        user_store.set_user_link(UserLink(matrix_user_id="@_discord_u1:localhost", remote_user_id="u1",
                                          guild_nicks={"g1": "Alice"}))

        assert user_store.get_user_link("u1").guild_nicks == {"g1": "Alice", "g2": "Al"}

    def test_lookup_by_matrix_id(self, user_store):
        user_store.set_user_link(UserLink(matrix_user_id="@_discord_u1:localhost", remote_user_id="u1",
                                          guild_nicks={"g1": "Ali"}))

        users = user_store.get_user_links_by_matrix_id("@_discord_u1:localhost")

        assert [user.remote_user_id for user in users] == ["u1"]
        assert users[0].guild_nicks == {"g1": "Ali"}
        assert user_store.get_user_links_by_matrix_id("@nobody:localhost") == []
