"""
Builders for links and Discord snapshots used across the tests.
"""

from bridgesync.models.records import ChannelLink, LinkPolicy, Provisioning
from bridgesync.models.remote import RemoteChannel, RemoteGuild, RemoteGuildMember, RemoteUser, MemberRole

UPLOADED_MXC = "mxc://localhost/uploaded"


def make_link(room_id="!room:localhost", channel_id="c1", guild_id="g1", update_name=True, update_topic=True,
              update_icon=True, provisioning=Provisioning.AUTO, **attributes) -> ChannelLink:
    """A link as created by alias resolution, with optional stored attributes."""
    link = ChannelLink(
        matrix_room_id=room_id,
        remote_room_id=f"discord_{guild_id}_{channel_id}",
        guild_id=guild_id,
        channel_id=channel_id,
        policy=LinkPolicy(update_name=update_name, update_topic=update_topic, update_icon=update_icon),
        provisioning=provisioning,
    )
    for key, value in attributes.items():
        setattr(link.attributes, key, value)
    return link


def make_channel(channel_id="c1", name="general", topic="General chat", guild_icon="abc", **kwargs) -> RemoteChannel:
    data = dict(
        id=channel_id,
        name=name,
        topic=topic,
        guild_id="g1",
        guild_name="Foo",
        guild_icon=guild_icon,
        member_ids=["u1", "u2"],
    )
    data.update(kwargs)
    return RemoteChannel(**data)


def make_user(user_id="u1", username="alice", discriminator="1234", avatar="av1", bot=False) -> RemoteUser:
    return RemoteUser(id=user_id, username=username, discriminator=discriminator, avatar=avatar, bot=bot)


def make_member(user=None, guild_id="g1", nick="Ali", roles=None) -> RemoteGuildMember:
    return RemoteGuildMember(
        user=user or make_user(),
        guild_id=guild_id,
        nick=nick,
        roles=roles if roles is not None else [MemberRole(name="Mods", color=255, position=2)],
        display_color=255,
    )


def make_guild(channels=None, members=None, icon="abc") -> RemoteGuild:
    return RemoteGuild(
        id="g1",
        name="Foo",
        icon=icon,
        channels=channels if channels is not None else [make_channel()],
        members=members or [],
    )
