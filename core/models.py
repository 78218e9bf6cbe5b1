"""
Core data models for the PinPrompt API

Defines the SQLModel tables held by the data gateway and the Pydantic view
models returned to clients.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import UniqueConstraint, inspect
from sqlmodel import SQLModel, Field, Relationship

from core.content import parse_body


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_loaded(row: SQLModel, attribute: str) -> bool:
    """True when a relationship was eagerly loaded and is safe to read."""
    return attribute not in inspect(row).unloaded


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


class AuthAccount(SQLModel, table=True):
    """
    Identity record of the platform auth service. The public profile lives in
    `Profile` and shares the same id.
    """

    __tablename__ = "auth_accounts"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    email: str = Field(index=True, unique=True, max_length=255)
    password_hash: str = Field(max_length=255)
    username: Optional[str] = Field(default=None, max_length=64)
    created_at: datetime = Field(default_factory=utcnow)
    last_sign_in_at: Optional[datetime] = Field(default=None)


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    username: str = Field(index=True, unique=True, max_length=64)
    email: Optional[str] = Field(default=None, max_length=255)
    avatar_url: Optional[str] = Field(default=None, max_length=1024)
    bio: Optional[str] = Field(default=None, max_length=2000)
    # Denormalized, maintained by the toggle_follow procedure
    followers_count: int = Field(default=0)
    following_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)


class ContentItem(SQLModel, table=True):
    """
    A shared post: the prompt (and optional reflection) plus the AI output.

    `output_url` is a public storage URL, or the literal text for text outputs.
    """

    __tablename__ = "content_items"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    user_id: str = Field(foreign_key="profiles.id", index=True, max_length=36)
    body: str
    output_url: Optional[str] = Field(default=None)
    output_type: str = Field(default="text", max_length=16)
    model_label: str = Field(default="", max_length=255)
    category: Optional[str] = Field(default=None, max_length=32)
    like_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow, index=True)

    author: Optional[Profile] = Relationship(sa_relationship_kwargs={"lazy": "selectin"})


class Like(SQLModel, table=True):
    __tablename__ = "likes"
    __table_args__ = (UniqueConstraint("user_id", "item_id", name="uq_likes_user_item"),)

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    user_id: str = Field(foreign_key="profiles.id", index=True, max_length=36)
    item_id: str = Field(
        foreign_key="content_items.id", index=True, ondelete="CASCADE", max_length=36
    )
    created_at: datetime = Field(default_factory=utcnow)


class Follow(SQLModel, table=True):
    __tablename__ = "follows"
    __table_args__ = (
        UniqueConstraint("follower_id", "following_id", name="uq_follows_edge"),
    )

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    follower_id: str = Field(foreign_key="profiles.id", index=True, max_length=36)
    following_id: str = Field(foreign_key="profiles.id", index=True, max_length=36)
    created_at: datetime = Field(default_factory=utcnow)


class Comment(SQLModel, table=True):
    __tablename__ = "comments"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    user_id: str = Field(foreign_key="profiles.id", index=True, max_length=36)
    item_id: str = Field(
        foreign_key="content_items.id", index=True, ondelete="CASCADE", max_length=36
    )
    body: str
    created_at: datetime = Field(default_factory=utcnow)

    author: Optional[Profile] = Relationship(sa_relationship_kwargs={"lazy": "selectin"})


class Message(SQLModel, table=True):
    __tablename__ = "messages"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    sender_id: str = Field(foreign_key="profiles.id", index=True, max_length=36)
    receiver_id: str = Field(foreign_key="profiles.id", index=True, max_length=36)
    body: str
    is_read: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, index=True)

    sender: Optional[Profile] = Relationship(
        sa_relationship_kwargs={"lazy": "selectin", "foreign_keys": "[Message.sender_id]"}
    )
    receiver: Optional[Profile] = Relationship(
        sa_relationship_kwargs={"lazy": "selectin", "foreign_keys": "[Message.receiver_id]"}
    )


class Notification(SQLModel, table=True):
    """Produced only as a side effect of likes, follows, messages and comments."""

    __tablename__ = "notifications"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    user_id: str = Field(foreign_key="profiles.id", index=True, max_length=36)
    kind: str = Field(max_length=16)
    title: str = Field(max_length=255)
    body: str = Field(default="")
    related_id: Optional[str] = Field(default=None, max_length=36)
    is_read: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, index=True)


class GeneratorModel(SQLModel, table=True):
    __tablename__ = "generator_models"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    name: str = Field(index=True, max_length=255)
    provider: str = Field(max_length=255)
    category: str = Field(max_length=32)
    is_active: bool = Field(default=True)
    sort_order: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------


class ProfileSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    avatar_url: Optional[str] = None
    followers_count: int = 0
    following_count: int = 0


class CommentView(BaseModel):
    id: str
    item_id: str
    user_id: str
    body: str
    created_at: datetime
    author: Optional[ProfileSummary] = None

    @classmethod
    def from_row(cls, row: Comment, author: Optional[Profile] = None) -> "CommentView":
        if author is None and is_loaded(row, "author"):
            author = row.author
        return cls(
            id=row.id,
            item_id=row.item_id,
            user_id=row.user_id,
            body=row.body,
            created_at=row.created_at,
            author=ProfileSummary.model_validate(author) if author else None,
        )


class FeedItem(BaseModel):
    """A content item as one viewer sees it."""

    id: str
    user_id: str
    body: str
    reflection: str = ""
    generation: str = ""
    output_url: Optional[str] = None
    output_type: str
    model_label: str
    category: Optional[str] = None
    like_count: int = 0
    created_at: datetime
    author: Optional[ProfileSummary] = None
    is_liked: bool = False
    comments: List[CommentView] = []

    @classmethod
    def from_row(cls, row: ContentItem, is_liked: bool = False) -> "FeedItem":
        reflection, generation = parse_body(row.body)
        author = row.author if is_loaded(row, "author") else None
        return cls(
            id=row.id,
            user_id=row.user_id,
            body=row.body,
            reflection=reflection,
            generation=generation,
            output_url=row.output_url,
            output_type=row.output_type,
            model_label=row.model_label,
            category=row.category,
            like_count=row.like_count,
            created_at=row.created_at,
            author=ProfileSummary.model_validate(author) if author else None,
            is_liked=is_liked,
        )

    def with_body(self, body: str, category: Optional[str]) -> "FeedItem":
        reflection, generation = parse_body(body)
        return self.model_copy(
            update={
                "body": body,
                "reflection": reflection,
                "generation": generation,
                "category": category,
            }
        )


class FeedPage(BaseModel):
    items: List[FeedItem]
    has_more: bool
    offset: int = 0


class LikeResult(BaseModel):
    item_id: str
    liked: bool
    like_delta: int


class MessageView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    sender_id: str
    receiver_id: str
    body: str
    is_read: bool
    created_at: datetime


class ConversationSummary(BaseModel):
    user: ProfileSummary
    last_message: MessageView
    unread_count: int = 0


class NotificationView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    kind: str
    title: str
    body: str
    related_id: Optional[str] = None
    is_read: bool
    created_at: datetime


class GeneratorModelView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    provider: str
    category: str


class ProfileView(ProfileSummary):
    bio: Optional[str] = None
    created_at: datetime
    is_following: bool = False
    items: List[FeedItem] = []
