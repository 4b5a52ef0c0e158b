"""Webhook models — subscriptions and their append-only delivery log."""

from __future__ import annotations

import uuid
from datetime import datetime  # noqa: TC003 - SQLAlchemy needs this at runtime for Mapped[datetime]
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from omniagent.models.base import Base, TimestampMixin, utc_now


def _new_id() -> str:
    return str(uuid.uuid4())


class WebhookSubscription(Base, TimestampMixin):
    """An external endpoint registered to receive signed event notifications.

    The secret is generated at creation and never changes afterwards.
    """

    __tablename__ = "webhook_subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    url: Mapped[str] = mapped_column(Text, nullable=False, comment="Callback URL")
    events: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    secret: Mapped[str] = mapped_column(String(128), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_triggered: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )

    attempts: Mapped[list[DeliveryAttempt]] = relationship(
        back_populates="subscription",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def subscribes_to(self, event: str) -> bool:
        """Whether this subscription receives *event* right now."""
        return self.active and event in (self.events or [])

    def __repr__(self) -> str:
        return f"<WebhookSubscription id={self.id} url={self.url[:30]}>"


class DeliveryAttempt(Base):
    """One try at delivering an envelope to a subscription. Never updated."""

    __tablename__ = "webhook_delivery_attempts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    subscription_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("webhook_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    response_status: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="0 when no response was received"
    )
    response_body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    subscription: Mapped[WebhookSubscription] = relationship(back_populates="attempts")

    def __repr__(self) -> str:
        return (
            f"<DeliveryAttempt sub={self.subscription_id} attempt={self.attempt} "
            f"status={self.response_status}>"
        )
