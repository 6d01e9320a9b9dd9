from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from database import Base
from models.post import AccessLevel, ContentType
from models.subscription import SubscriptionStatus, SubscriptionTier, UserRole


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """
    User account and its subscription record.

    Writes are optimistic: `version` is bumped on every flush and an UPDATE
    against a stale version raises StaleDataError.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    hashed_password = Column(String, nullable=False)
    role = Column(String, nullable=False, default=UserRole.USER.value)
    is_active = Column(Boolean, nullable=False, default=True)

    subscription_tier = Column(String, nullable=False, default=SubscriptionTier.NONE.value)
    subscription_status = Column(String, nullable=False, default=SubscriptionStatus.INACTIVE.value)
    stripe_customer_id = Column(String, unique=True, nullable=True, index=True)
    stripe_subscription_id = Column(String, unique=True, nullable=True, index=True)
    subscription_end_date = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class Post(Base):
    """Content item gated by its access level."""
    __tablename__ = "posts"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    excerpt = Column(String, nullable=True)
    access_level = Column(String, nullable=False, default=AccessLevel.PUBLIC.value, index=True)
    content_type = Column(String, nullable=False, default=ContentType.TEXT.value)
    tags = Column(JSON, nullable=False, default=list)
    published = Column(Boolean, nullable=False, default=True, index=True)
    views = Column(Integer, nullable=False, default=0)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # Many-to-one, loaded with the post so async code never lazy-loads it
    author = relationship("User", lazy="joined")
