from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SwipeRequest(BaseModel):
    target_id: str
    action: str


class ToggleRequest(BaseModel):
    # omitted means "flip the current value"
    value: bool | None = None


class SendMessageRequest(BaseModel):
    content: str


class SendLetterRequest(BaseModel):
    content: str


class PreferencesUpdate(BaseModel):
    min_age: int | None = None
    max_age: int | None = None
    show_me: list[str] | None = None
    preferred_city: str | None = None
    preferred_gender: str | None = None


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    first_name: str | None = None
    age: Any = None
    gender: str | None = None
    city: str | None = None
    state: str | None = None
    occupation: str | None = None
    bio: str | None = None
    tagline: str | None = None
    mental_tags: list[str] | None = None
    looking_for: list[str] | None = None
    love_language: str | None = None
    text_style: str | None = None
    instagram_id: str | None = None
    chat_starter: str | None = None
    current_song: str | None = None
    ick: str | None = None
    green_flag: str | None = None


class CouponRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)


class ReportRequest(BaseModel):
    reported_user_id: str = Field(min_length=1, max_length=36)
    message: str
