"""
Subscription models: a Discord channel (with its webhook) and the items it tracks.
"""

from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text,
    ForeignKey, func, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from .base import Base


class SubscribedChannel(Base):
    __tablename__ = "subscribed_channels"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Discord snowflakes are stored as strings
    guild_id = Column(String(32), nullable=False, index=True)
    channel_id = Column(String(32), nullable=False)

    # Delivery credential
    webhook_id = Column(String(32), nullable=False)
    webhook_token = Column(String(255), nullable=False)

    # The channel's own content policy, captured when tracking
    nsfw = Column(Boolean, default=False, nullable=False)

    # Set when the webhook disappears or we lose permission; cleared by re-linking
    unreachable = Column(Boolean, default=False, nullable=False)
    unreachable_since = Column(DateTime(timezone=True), nullable=True)

    last_update = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    items = relationship(
        "SubscribedItem",
        back_populates="channel",
        cascade="all, delete-orphan",
        order_by="SubscribedItem.id",
    )

    __table_args__ = (
        UniqueConstraint("guild_id", "channel_id", name="uq_subscribed_channel"),
    )

    def __repr__(self):
        return (
            f"<SubscribedChannel(id={self.id}, guild={self.guild_id}, channel={self.channel_id}, "
            f"unreachable={self.unreachable})>"
        )


class SubscribedItem(Base):
    __tablename__ = "subscribed_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    parent = Column(Integer, ForeignKey("subscribed_channels.id", ondelete="CASCADE"), nullable=False, index=True)

    # game | mod | collection | user
    type = Column(String(16), nullable=False)
    # game domain, mod uid, "<domain>:<slug>" or member id
    entityid = Column(String(255), nullable=False)
    title = Column(String(255), nullable=False)
    # Discord user who asked for the subscription
    owner = Column(String(32), nullable=True)

    # Display config
    crosspost = Column(Boolean, default=False, nullable=False)
    compact = Column(Boolean, default=False, nullable=False)
    message = Column(Text, nullable=True)
    nsfw = Column(Boolean, nullable=True)
    sfw = Column(Boolean, nullable=True)

    # Games only
    show_new = Column(Boolean, nullable=True)
    show_updates = Column(Boolean, nullable=True)

    # Last availability status we saw upstream (mods, collections, users)
    last_status = Column(String(32), nullable=True)

    # Watermark: exclusive lower bound of what still needs posting
    last_update = Column(DateTime(timezone=True), nullable=False)
    error_count = Column(Integer, default=0, nullable=False)
    created = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    channel = relationship("SubscribedChannel", back_populates="items")

    __table_args__ = (
        Index("ix_subscribed_items_type_entity", "type", "entityid"),
    )

    def __repr__(self):
        return f"<SubscribedItem(id={self.id}, parent={self.parent}, type={self.type}, entity={self.entityid!r})>"
