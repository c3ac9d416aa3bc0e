"""Database models for the request bot."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import ForeignKey
from sqlalchemy import Index, CheckConstraint
from sqlalchemy import Integer
from sqlalchemy import JSON
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy import Uuid
from sqlalchemy.orm import Mapped, relationship
from sqlalchemy.orm import mapped_column

from requestbot.shared.database import Base, UTCDateTime


class User(Base):
    """Discord member known to the bot.

    Rows are created lazily the first time a member interacts with the bot
    and are never modified afterwards.
    """

    __tablename__ = "user"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        doc="Internal user identifier"
    )
    discord_user_id: Mapped[str] = mapped_column(
        String,
        nullable=False,
        unique=True,
        doc="Discord user snowflake ID"
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        doc="When the user was first seen"
    )

    def __init__(self, **kwargs):
        kwargs.setdefault('created_at', datetime.now(timezone.utc))
        super().__init__(**kwargs)

    @property
    def mention(self) -> str:
        return f"<@{self.discord_user_id}>"

    def __repr__(self) -> str:
        return f"<User(discord_user_id='{self.discord_user_id}')>"


class Request(Base):
    """A posted unit of work made up of ordered tasks.

    ``archived_on`` moves from null to a timestamp exactly once. The message
    id is only known after the message has been sent, so it starts out null.
    """

    __tablename__ = "request"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        doc="Unique request identifier"
    )
    title: Mapped[str] = mapped_column(
        String,
        nullable=False,
        doc="Summary of the request"
    )
    created_by: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("user.id"),
        nullable=False,
        doc="User who made the request"
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        doc="When the request was made"
    )
    discord_message_id: Mapped[Optional[str]] = mapped_column(
        String,
        nullable=True,
        unique=True,
        doc="Discord message currently displaying the request"
    )
    discord_channel_id: Mapped[Optional[str]] = mapped_column(
        String,
        nullable=True,
        doc="Channel the request was posted in (null for private requests)"
    )
    thumbnail_url: Mapped[Optional[str]] = mapped_column(
        String,
        nullable=True,
        doc="Optional thumbnail shown on the request embed"
    )
    expires_on: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="When the request is archived regardless of task state"
    )
    archived_on: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="When the request was archived"
    )
    created_by_schedule: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("request_schedule.id"),
        nullable=True,
        doc="Schedule that generated this request, if any"
    )

    creator: Mapped["User"] = relationship("User", lazy="joined")

    __table_args__ = (
        Index("ix_request_archived_expires", "archived_on", "expires_on"),
        Index("ix_request_created_by_schedule", "created_by_schedule"),
    )

    def __init__(self, **kwargs):
        kwargs.setdefault('created_at', datetime.now(timezone.utc))
        super().__init__(**kwargs)

    @property
    def is_archived(self) -> bool:
        return self.archived_on is not None

    def __repr__(self) -> str:
        status = "archived" if self.is_archived else "open"
        return f"<Request(id='{self.id}', title='{self.title}', status='{status}')>"


class Task(Base):
    """One sub-item of a request with claim and completion state."""

    __tablename__ = "task"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        doc="Unique task identifier"
    )
    request_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("request.id"),
        nullable=False,
        doc="Request owning this task"
    )
    weight: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        doc="Display order, sequential from 1"
    )
    task: Mapped[str] = mapped_column(
        String,
        nullable=False,
        doc="Task text"
    )
    assigned_to: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("user.id"),
        nullable=True,
        doc="User who claimed or completed the task"
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="When the task was claimed"
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="When the task was completed"
    )

    assignee: Mapped[Optional["User"]] = relationship("User", lazy="joined")

    __table_args__ = (
        Index("ix_task_request_weight", "request_id", "weight"),
    )

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @property
    def is_claimed(self) -> bool:
        return self.started_at is not None

    def __repr__(self) -> str:
        return f"<Task(weight={self.weight}, task='{self.task}', request_id='{self.request_id}')>"


class ArchiveRule(Base):
    """Routes archived requests from one channel to another."""

    __tablename__ = "archive_rule"

    from_channel: Mapped[str] = mapped_column(
        String,
        primary_key=True,
        doc="Channel requests are archived from"
    )
    to_channel: Mapped[str] = mapped_column(
        String,
        nullable=False,
        doc="Channel archived requests are moved to"
    )

    def __repr__(self) -> str:
        return f"<ArchiveRule(from_channel='{self.from_channel}', to_channel='{self.to_channel}')>"


class RequestSchedule(Base):
    """Template that posts a fresh request on a fixed cadence.

    The tracking message is the one posted when the schedule was created;
    once Discord reports it gone the schedule is disabled for good.
    """

    __tablename__ = "request_schedule"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        doc="Unique schedule identifier"
    )
    created_by: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("user.id"),
        nullable=False,
        doc="User who set up the schedule"
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        doc="When the schedule was created"
    )
    disabled_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="When the schedule was permanently disabled"
    )
    discord_message_id: Mapped[Optional[str]] = mapped_column(
        String,
        nullable=True,
        unique=True,
        doc="Tracking message; deleting it disables the schedule"
    )
    discord_channel_id: Mapped[str] = mapped_column(
        String,
        nullable=False,
        doc="Channel requests are posted in"
    )
    seconds_between_requests: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        doc="Cadence in seconds"
    )
    title: Mapped[str] = mapped_column(
        String,
        nullable=False,
        doc="Title of generated requests"
    )
    tasks: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        doc="Task texts of generated requests, in order"
    )
    thumbnail_url: Mapped[Optional[str]] = mapped_column(
        String,
        nullable=True,
        doc="Thumbnail of generated requests"
    )

    __table_args__ = (
        CheckConstraint(
            "seconds_between_requests > 0",
            name="ck_request_schedule_cadence_positive",
        ),
    )

    def __init__(self, **kwargs):
        kwargs.setdefault('created_at', datetime.now(timezone.utc))
        kwargs.setdefault('tasks', [])
        super().__init__(**kwargs)

    @property
    def is_active(self) -> bool:
        return self.disabled_at is None

    def __repr__(self) -> str:
        status = "active" if self.is_active else "disabled"
        return f"<RequestSchedule(title='{self.title}', channel_id='{self.discord_channel_id}', status='{status}')>"


class Delivery(Base):
    """Write-once record of items handed in by a member."""

    __tablename__ = "delivery"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        doc="Unique delivery identifier"
    )
    created_by: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("user.id"),
        nullable=False,
        doc="User who logged the delivery"
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        doc="When the delivery was logged"
    )
    discord_message_id: Mapped[Optional[str]] = mapped_column(
        String,
        nullable=True,
        unique=True,
        doc="Message the delivery was posted as"
    )

    creator: Mapped["User"] = relationship("User", lazy="joined")
    items: Mapped[List["DeliveryItem"]] = relationship(
        "DeliveryItem",
        order_by="DeliveryItem.position",
        lazy="selectin",
    )

    def __init__(self, **kwargs):
        kwargs.setdefault('created_at', datetime.now(timezone.utc))
        super().__init__(**kwargs)


class DeliveryItem(Base):
    """Single item/amount line of a delivery."""

    __tablename__ = "delivery_item"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    delivery_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("delivery.id"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        doc="Order of the item within the delivery"
    )
    item_name: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_delivery_item_amount_positive"),
    )
