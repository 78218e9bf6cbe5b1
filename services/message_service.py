"""
Direct Messaging Service.

Conversations are not stored; they are derived by grouping a viewer's
messages by the other participant.

Key Components:
- `MessageService`: Conversation summaries, threads, sending, user search and
  the bulk "mark conversation read" update.
- `Inbox`: One viewer's conversation list. Opening a conversation loads its
  thread and fires the mark-read update as a background task; when that task
  finishes the summaries are refreshed. While listening it also refreshes on
  every incoming message. Background failures are logged only.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from core.config import settings
from core.content import NotificationKind
from core.exceptions import PinPromptException, ProfileNotFoundError, ValidationError
from core.models import ConversationSummary, MessageView, Profile, ProfileSummary
from providers.gateway import DataGateway, and_, eq, or_
from services.notification_service import notify

logger = logging.getLogger(__name__)

MESSAGE_MAX_LENGTH = 5000


class MessageService:
    def __init__(self, gateway: DataGateway, search_limit: Optional[int] = None):
        self.gateway = gateway
        self.search_limit = search_limit or settings.user_search_limit

    async def list_conversations(self, viewer: Profile) -> List[ConversationSummary]:
        """One summary per conversation partner, most recent conversation first"""
        messages = await (
            self.gateway.table("messages")
            .or_(eq("sender_id", viewer.id), eq("receiver_id", viewer.id))
            .order("created_at", descending=True)
            .select()
        )

        conversations: Dict[str, ConversationSummary] = {}
        for message in messages:
            incoming = message.receiver_id == viewer.id
            other = message.sender if incoming else message.receiver
            other_id = message.sender_id if incoming else message.receiver_id

            summary = conversations.get(other_id)
            if summary is None:
                summary = ConversationSummary(
                    user=ProfileSummary.model_validate(other),
                    last_message=MessageView.model_validate(message),
                )
                conversations[other_id] = summary
            if incoming and not message.is_read:
                summary.unread_count += 1

        return list(conversations.values())

    async def fetch_thread(self, viewer: Profile, other_id: str) -> List[MessageView]:
        """Messages between the viewer and `other_id`, oldest first"""
        messages = await (
            self.gateway.table("messages")
            .or_(
                and_(eq("sender_id", viewer.id), eq("receiver_id", other_id)),
                and_(eq("sender_id", other_id), eq("receiver_id", viewer.id)),
            )
            .order("created_at")
            .select()
        )
        return [MessageView.model_validate(message) for message in messages]

    async def send_message(self, viewer: Profile, receiver_id: str, body: str) -> MessageView:
        text = (body or "").strip()
        if not text:
            raise ValidationError("body", body, "Message must not be empty")
        if len(text) > MESSAGE_MAX_LENGTH:
            raise ValidationError("body", f"{len(text)} characters", f"exceeds {MESSAGE_MAX_LENGTH} characters")

        receiver = await self.gateway.table("profiles").eq("id", receiver_id).first()
        if receiver is None:
            raise ProfileNotFoundError(receiver_id)

        rows = await self.gateway.table("messages").insert(
            [{"sender_id": viewer.id, "receiver_id": receiver_id, "body": text}]
        )
        await notify(
            self.gateway,
            recipient=receiver_id,
            kind=NotificationKind.MESSAGE,
            title="New Message",
            body=f"{viewer.username} sent you a message",
            related_id=viewer.id,
        )
        return MessageView.model_validate(rows[0])

    async def search_users(self, viewer: Profile, text: str) -> List[ProfileSummary]:
        text = (text or "").strip()
        if not text:
            return []
        rows = await (
            self.gateway.table("profiles")
            .ilike("username", text)
            .neq("id", viewer.id)
            .order("username")
            .limit(self.search_limit)
            .select()
        )
        return [ProfileSummary.model_validate(row) for row in rows]

    async def mark_conversation_read(self, viewer: Profile, sender_id: str) -> int:
        """Mark every unread message from `sender_id` to the viewer as read"""
        rows = await (
            self.gateway.table("messages")
            .eq("sender_id", sender_id)
            .eq("receiver_id", viewer.id)
            .eq("is_read", False)
            .update({"is_read": True})
        )
        return len(rows)

    async def unread_count(self, viewer_id: str) -> int:
        return await (
            self.gateway.table("messages").eq("receiver_id", viewer_id).eq("is_read", False).count()
        )


class Inbox:
    """A viewer's conversation list with fire-and-forget read marking"""

    def __init__(
        self,
        service: MessageService,
        viewer: Profile,
        on_change: Optional[Callable[["Inbox"], Awaitable[Any]]] = None,
    ):
        self.service = service
        self.viewer = viewer
        self.on_change = on_change
        self.conversations: List[ConversationSummary] = []
        self.selected_id: Optional[str] = None
        self.thread: List[MessageView] = []
        self.error: Optional[str] = None
        self.background_tasks: Set[asyncio.Task] = set()
        self._unsubscribe: Optional[Callable[[], None]] = None

    def listen(self) -> None:
        """Refresh whenever a message for the viewer arrives"""
        if self._unsubscribe is None:
            self._unsubscribe = self.service.gateway.subscribe(
                "messages", {"receiver_id": self.viewer.id}, on_insert=self._on_incoming
            )

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _on_incoming(self, row) -> None:
        if row.sender_id == self.selected_id:
            self.thread.append(MessageView.model_validate(row))
        await self.refresh()

    async def refresh(self) -> List[ConversationSummary]:
        try:
            self.conversations = await self.service.list_conversations(self.viewer)
        except PinPromptException as e:
            logger.warning(f"Conversation refresh for {self.viewer.id} failed: {e.message}")
            return self.conversations
        await self._changed()
        return self.conversations

    async def open_conversation(self, other_id: str) -> List[MessageView]:
        self.selected_id = other_id
        self.thread = await self.service.fetch_thread(self.viewer, other_id)

        task = asyncio.create_task(self._mark_read_and_refresh(other_id))
        self.background_tasks.add(task)
        task.add_done_callback(self.background_tasks.discard)
        return self.thread

    async def _mark_read_and_refresh(self, other_id: str) -> None:
        try:
            await self.service.mark_conversation_read(self.viewer, other_id)
        except PinPromptException as e:
            logger.warning(f"Marking conversation with {other_id} read failed: {e.message}")
            return
        await self.refresh()

    async def send(self, body: str) -> Optional[MessageView]:
        """Send to the open conversation. Failures are kept in `error`."""
        if self.selected_id is None:
            raise ValidationError("receiver_id", None, "No conversation is open")
        self.error = None
        try:
            message = await self.service.send_message(self.viewer, self.selected_id, body)
        except PinPromptException as e:
            self.error = e.message
            await self._changed()
            return None

        self.thread.append(message)
        await self.refresh()
        return message

    async def drain(self) -> None:
        """Wait for background work, e.g. before closing"""
        if self.background_tasks:
            await asyncio.gather(*self.background_tasks, return_exceptions=True)

    def snapshot(self) -> dict:
        return {
            "conversations": [c.model_dump(mode="json") for c in self.conversations],
            "selected_id": self.selected_id,
            "thread": [m.model_dump(mode="json") for m in self.thread],
            "error": self.error,
        }

    async def _changed(self) -> None:
        if self.on_change is not None:
            await self.on_change(self)
