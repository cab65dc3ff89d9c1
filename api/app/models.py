import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Index, Integer, String, Text, text
from .database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


ACTIVE_PAIR_WHERE = text("status IN ('pending_request', 'active', 'revealed', 'pending_reveal')")


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=_uuid)
    first_name = Column(String(80), nullable=True)
    age = Column(Integer, nullable=True)
    gender = Column(String(32), nullable=True)
    city = Column(String(120), nullable=True)
    state = Column(String(120), nullable=True)
    occupation = Column(String(120), nullable=True)
    bio = Column(Text, nullable=True)
    tagline = Column(String(200), nullable=True)
    mental_tags = Column(JSON, nullable=False, default=list)
    looking_for = Column(JSON, nullable=False, default=list)
    love_language = Column(String(64), nullable=True)
    text_style = Column(String(64), nullable=True)
    instagram_id = Column(String(200), nullable=True)
    chat_starter = Column(String(300), nullable=True)
    current_song = Column(String(200), nullable=True)
    ick = Column(String(300), nullable=True)
    green_flag = Column(String(300), nullable=True)
    is_active = Column(Boolean, nullable=False, default=False)
    subscription_ended = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)


class ChatPreferences(Base):
    __tablename__ = "chat_preferences"

    user_id = Column(String(36), primary_key=True)
    min_age = Column(Integer, nullable=False, default=18)
    max_age = Column(Integer, nullable=False, default=100)
    show_me = Column(JSON, nullable=False, default=list)
    preferred_city = Column(String(120), nullable=True)
    preferred_gender = Column(String(32), nullable=True)
    exclusions_reset_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)


class ChatMatch(Base):
    __tablename__ = "chat_matches"

    id = Column(String(36), primary_key=True, default=_uuid)
    user1_id = Column(String(36), nullable=False, index=True)
    user2_id = Column(String(36), nullable=False, index=True)
    pair_key = Column(String(80), nullable=False)
    status = Column(String(32), nullable=False, default="pending_request")
    expires_at = Column(DateTime(timezone=True), nullable=False)
    user1_liked = Column(Boolean, nullable=False, default=False)
    user2_liked = Column(Boolean, nullable=False, default=False)
    user1_reveal = Column(Boolean, nullable=False, default=False)
    user2_reveal = Column(Boolean, nullable=False, default=False)
    reveal_requested_by = Column(String(36), nullable=True)
    viewed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)

    __table_args__ = (
        Index(
            "uq_chat_matches_active_pair",
            "pair_key",
            unique=True,
            postgresql_where=ACTIVE_PAIR_WHERE,
            sqlite_where=ACTIVE_PAIR_WHERE,
        ),
        Index("idx_chat_matches_user2_status", "user2_id", "status"),
    )


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(String(36), primary_key=True, default=_uuid)
    match_id = Column(String(36), nullable=False, index=True)
    sender_id = Column(String(36), nullable=False)
    receiver_id = Column(String(36), nullable=False, index=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    read_at = Column(DateTime(timezone=True), nullable=True)


class Letter(Base):
    __tablename__ = "letters"

    id = Column(String(36), primary_key=True, default=_uuid)
    sender_id = Column(String(36), nullable=False, index=True)
    recipient_id = Column(String(36), nullable=False, index=True)
    content = Column(Text, nullable=False)
    status = Column(String(32), nullable=False, default="pending")
    matched = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    read_at = Column(DateTime(timezone=True), nullable=True)


class SwipeLog(Base):
    __tablename__ = "swipe_logs"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    action = Column(String(8), nullable=False)
    swiped_profile_id = Column(String(36), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)


class SwipeCounter(Base):
    __tablename__ = "swipe_counters"

    user_id = Column(String(36), primary_key=True)
    swipe_date = Column(Date, primary_key=True)
    swipe_count = Column(Integer, nullable=False, default=0)


class Coupon(Base):
    __tablename__ = "coupons"

    code = Column(String(64), primary_key=True)
    max_uses = Column(Integer, nullable=False, default=1)
    used_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)


class UserReport(Base):
    __tablename__ = "user_reports"

    id = Column(String(36), primary_key=True, default=_uuid)
    reporter_id = Column(String(36), nullable=False, index=True)
    reported_user_id = Column(String(36), nullable=False, index=True)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
