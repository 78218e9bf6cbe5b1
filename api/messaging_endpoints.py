"""
Messaging, Notification and Live Endpoints.

REST endpoints for direct messages and notifications, plus the WebSocket
channels that keep a client live.

Endpoints Provided:
- `GET /conversations`: Conversation summaries derived from messages.
- `GET /conversations/{other_id}/messages`: A thread, oldest first. Opening
  a thread marks it read in the background.
- `POST /messages`: Send a direct message.
- `GET /users/search`: Find people to message.
- `GET /notifications`, `POST /notifications/read`,
  `POST /notifications/read-all`, `GET /badges`.
- `/ws/feed`: A live feed session. The client sends filter, scroll and
  mutation messages; the server answers with feed snapshots.
- `/ws/messages`: The conversation list and the open thread. Opening a
  thread marks it read in the background and the refreshed summaries are
  pushed once that finishes; incoming messages are pushed as they arrive.
- `/ws/badges`: Pushes unread notification and message counts whenever they
  change.

WebSockets authenticate with a `token` query parameter; a connection without
a valid session is closed with code 4401 before it is accepted.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from core.exceptions import AuthenticationError, PinPromptException, ValidationError
from core.logging_config import log_function_call, set_correlation_id
from core.models import (
    ConversationSummary,
    MessageView,
    NotificationView,
    Profile,
    ProfileSummary,
)
from services.feed_service import FeedController
from services.message_service import Inbox, MessageService
from services.notification_service import (
    NotificationService,
    badge_label,
    message_counter,
    notification_counter,
)
from .dependencies import (
    get_current_profile,
    get_message_service,
    get_notification_service,
    get_services,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Messaging"])
websocket_router = APIRouter(tags=["WebSocket Communication"])

WS_UNAUTHORIZED = 4401


# Request/Response Models
class SendMessageRequest(BaseModel):
    receiver_id: str
    body: str


class MarkReadRequest(BaseModel):
    notification_id: str


class BadgeCounts(BaseModel):
    notifications: int
    notifications_label: Optional[str] = None
    messages: int
    messages_label: Optional[str] = None


def _badges(notifications: int, messages: int) -> BadgeCounts:
    return BadgeCounts(
        notifications=notifications,
        notifications_label=badge_label(notifications),
        messages=messages,
        messages_label=badge_label(messages),
    )


async def _mark_conversation_read(
    service: MessageService, viewer: Profile, other_id: str
) -> None:
    try:
        await service.mark_conversation_read(viewer, other_id)
    except PinPromptException as e:
        logger.warning(f"Background mark-read of {other_id} for {viewer.id} failed: {e.message}")


# Messages
@router.get("/conversations", response_model=List[ConversationSummary])
async def list_conversations(
    viewer: Profile = Depends(get_current_profile),
    messages: MessageService = Depends(get_message_service),
):
    return await messages.list_conversations(viewer)


@router.get("/conversations/{other_id}/messages", response_model=List[MessageView])
async def fetch_thread(
    other_id: str,
    background_tasks: BackgroundTasks,
    viewer: Profile = Depends(get_current_profile),
    messages: MessageService = Depends(get_message_service),
):
    """Open a conversation; unread messages from `other_id` are marked read afterwards"""
    thread = await messages.fetch_thread(viewer, other_id)
    background_tasks.add_task(_mark_conversation_read, messages, viewer, other_id)
    return thread


@router.post("/messages", response_model=MessageView, status_code=201)
@log_function_call(logger)
async def send_message(
    request: SendMessageRequest,
    viewer: Profile = Depends(get_current_profile),
    messages: MessageService = Depends(get_message_service),
):
    return await messages.send_message(viewer, request.receiver_id, request.body)


@router.get("/users/search", response_model=List[ProfileSummary])
async def search_users(
    q: str = "",
    viewer: Profile = Depends(get_current_profile),
    messages: MessageService = Depends(get_message_service),
):
    return await messages.search_users(viewer, q)


# Notifications
@router.get("/notifications", response_model=List[NotificationView])
async def list_notifications(
    viewer: Profile = Depends(get_current_profile),
    notifications: NotificationService = Depends(get_notification_service),
):
    return await notifications.list_notifications(viewer)


@router.post("/notifications/read")
async def mark_notification_read(
    request: MarkReadRequest,
    viewer: Profile = Depends(get_current_profile),
    notifications: NotificationService = Depends(get_notification_service),
):
    updated = await notifications.mark_read(viewer, request.notification_id)
    return {"updated": updated}


@router.post("/notifications/read-all")
async def mark_all_notifications_read(
    viewer: Profile = Depends(get_current_profile),
    notifications: NotificationService = Depends(get_notification_service),
):
    updated = await notifications.mark_all_read(viewer)
    return {"updated": updated}


@router.get("/badges", response_model=BadgeCounts)
async def get_badges(
    viewer: Profile = Depends(get_current_profile),
    notifications: NotificationService = Depends(get_notification_service),
    messages: MessageService = Depends(get_message_service),
):
    """Unread notification and message counts"""
    return _badges(
        await notifications.unread_count(viewer.id),
        await messages.unread_count(viewer.id),
    )


# WebSocket Endpoints
async def _authenticate(websocket: WebSocket, token: Optional[str]) -> Optional[Profile]:
    try:
        return await get_services().session_guard.resolve_session(token)
    except AuthenticationError as e:
        logger.warning(f"WebSocket authentication failed: {e.message}")
        await websocket.close(code=WS_UNAUTHORIZED, reason="Authentication required")
        return None


async def _send(websocket: WebSocket, payload: Dict[str, Any]) -> None:
    try:
        await websocket.send_json(payload)
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug(f"Dropping WebSocket message: {e}")


async def _receive_object(websocket: WebSocket) -> Dict[str, Any]:
    """Next client frame as a JSON object; malformed frames raise ValidationError"""
    try:
        data = await websocket.receive_json()
    except ValueError:
        raise ValidationError("message", None, "Message is not valid JSON")
    if not isinstance(data, dict):
        raise ValidationError("message", data, "Message must be a JSON object")
    return data


def _error_payload(error: PinPromptException) -> Dict[str, Any]:
    return {"type": "error", "error": {"code": error.error_code, "message": error.message}}


async def _handle_feed_message(controller: FeedController, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Apply one client message to the feed controller; returns a direct reply, if any"""
    kind = data.get("type")

    if kind == "ping":
        return {"type": "pong"}
    if kind == "search":
        controller.set_search_text(data.get("text", ""))
    elif kind == "model":
        controller.set_model_filter(data.get("text", ""))
    elif kind == "sort":
        await controller.set_sort(data.get("sort", "recent"))
    elif kind == "refresh":
        await controller.refresh()
    elif kind == "load_more":
        await controller.load_more()
    elif kind == "scroll":
        await controller.on_scroll(
            float(data.get("viewport_bottom", 0)), float(data.get("document_height", 0))
        )
    elif kind == "like":
        await controller.toggle_like(data["item_id"])
    elif kind == "comment":
        await controller.add_comment(data["item_id"], data.get("body", ""))
    elif kind == "edit_start":
        controller.start_edit(data["item_id"])
        return {"type": "edit", "data": controller.snapshot()["edit"]}
    elif kind == "edit_update":
        accepted = controller.update_edit(
            reflection=data.get("reflection"),
            generation=data.get("generation"),
            category=data.get("category"),
        )
        return {
            "type": "edit_buffer",
            "accepted": accepted,
            "reflection": controller.edit.reflection,
            "generation": controller.edit.generation,
            "category": controller.edit.category,
        }
    elif kind == "edit_save":
        saved = await controller.save_edit()
        if saved is None:
            return {"type": "edit", "data": controller.snapshot()["edit"]}
    elif kind == "edit_cancel":
        controller.cancel_edit()
        return {"type": "edit", "data": controller.snapshot()["edit"]}
    elif kind == "delete":
        await controller.delete_item(data["item_id"])
    else:
        raise ValidationError("type", kind, "Unknown message type")
    return None


@websocket_router.websocket("/ws/feed")
async def websocket_feed(websocket: WebSocket, token: Optional[str] = Query(None)):
    """Live feed session for one viewer"""
    viewer = await _authenticate(websocket, token)
    if viewer is None:
        return

    services = get_services()
    set_correlation_id(f"ws-feed-{viewer.id}")

    async def push(controller: FeedController) -> None:
        await _send(websocket, {"type": "feed", "data": controller.snapshot()})

    controller = FeedController(
        services.feed_engine,
        viewer,
        services.like_service,
        services.content_service,
        on_change=push,
    )

    await websocket.accept()
    logger.info(f"Feed WebSocket connected for {viewer.username}")
    await websocket.send_json({"type": "connected", "user_id": viewer.id})

    try:
        await controller.refresh()
        while True:
            try:
                data = await _receive_object(websocket)
                reply = await _handle_feed_message(controller, data)
            except KeyError as e:
                reply = _error_payload(ValidationError(str(e), None, "Missing field"))
            except PinPromptException as e:
                reply = _error_payload(e)
            if reply is not None:
                await websocket.send_json(reply)
    except WebSocketDisconnect:
        logger.info(f"Feed WebSocket disconnected for {viewer.username}")
    finally:
        controller.close()


async def _handle_inbox_message(inbox: Inbox, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    kind = data.get("type")

    if kind == "ping":
        return {"type": "pong"}
    if kind == "refresh":
        await inbox.refresh()
    elif kind == "open":
        await inbox.open_conversation(data["user_id"])
        return {"type": "inbox", "data": inbox.snapshot()}
    elif kind == "send":
        await inbox.send(data.get("body", ""))
    else:
        raise ValidationError("type", kind, "Unknown message type")
    return None


@websocket_router.websocket("/ws/messages")
async def websocket_messages(websocket: WebSocket, token: Optional[str] = Query(None)):
    """Live conversation list and open thread for one viewer"""
    viewer = await _authenticate(websocket, token)
    if viewer is None:
        return

    set_correlation_id(f"ws-messages-{viewer.id}")

    async def push(inbox: Inbox) -> None:
        await _send(websocket, {"type": "inbox", "data": inbox.snapshot()})

    inbox = Inbox(get_services().message_service, viewer, on_change=push)

    await websocket.accept()
    logger.info(f"Messages WebSocket connected for {viewer.username}")
    await websocket.send_json({"type": "connected", "user_id": viewer.id})

    try:
        await inbox.refresh()
        inbox.listen()
        while True:
            try:
                data = await _receive_object(websocket)
                reply = await _handle_inbox_message(inbox, data)
            except KeyError as e:
                reply = _error_payload(ValidationError(str(e), None, "Missing field"))
            except PinPromptException as e:
                reply = _error_payload(e)
            if reply is not None:
                await websocket.send_json(reply)
    except WebSocketDisconnect:
        logger.info(f"Messages WebSocket disconnected for {viewer.username}")
    finally:
        inbox.close()
        await inbox.drain()


@websocket_router.websocket("/ws/badges")
async def websocket_badges(websocket: WebSocket, token: Optional[str] = Query(None)):
    """Push unread counts for the bell and message badges"""
    viewer = await _authenticate(websocket, token)
    if viewer is None:
        return

    gateway = get_services().gateway
    counts = {"notifications": 0, "messages": 0}

    async def push() -> None:
        badges = _badges(counts["notifications"], counts["messages"])
        await _send(websocket, {"type": "badges", "data": badges.model_dump()})

    async def on_notifications(count: int) -> None:
        counts["notifications"] = count
        await push()

    async def on_messages(count: int) -> None:
        counts["messages"] = count
        await push()

    await websocket.accept()
    counters = [
        notification_counter(gateway, viewer.id),
        message_counter(gateway, viewer.id),
    ]
    try:
        counts["notifications"] = await counters[0].start()
        counts["messages"] = await counters[1].start()
        # Both counts are known before the first push
        counters[0].on_change = on_notifications
        counters[1].on_change = on_messages
        await push()
        while True:
            try:
                data = await _receive_object(websocket)
            except ValidationError as e:
                await websocket.send_json(_error_payload(e))
                continue
            if data.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        logger.info(f"Badge WebSocket disconnected for {viewer.username}")
    finally:
        for counter in counters:
            counter.stop()
