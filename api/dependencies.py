"""
Service wiring and request dependencies.

Services are created once at startup by `init_services` and handed to
endpoints through the getters below. Keeping one instance per process lets
per-key guards (like toggles, notification reads) span requests.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.exceptions import AuthenticationError
from core.models import Profile
from providers.gateway import DataGateway
from services.feed_service import FeedQueryEngine
from services.message_service import MessageService
from services.model_catalog import ModelCatalog
from services.mutation_service import ContentService, LikeService
from services.notification_service import NotificationService
from services.profile_service import ProfileService
from services.session_service import SessionGuard
from services.upload_service import UploadService


@dataclass
class Services:
    gateway: DataGateway
    session_guard: SessionGuard
    feed_engine: FeedQueryEngine
    like_service: LikeService
    content_service: ContentService
    profile_service: ProfileService
    upload_service: UploadService
    message_service: MessageService
    notification_service: NotificationService
    model_catalog: ModelCatalog


_services: Optional[Services] = None


def init_services(gateway: DataGateway) -> Services:
    global _services
    feed_engine = FeedQueryEngine(gateway)
    _services = Services(
        gateway=gateway,
        session_guard=SessionGuard(gateway),
        feed_engine=feed_engine,
        like_service=LikeService(gateway),
        content_service=ContentService(gateway),
        profile_service=ProfileService(gateway, feed_engine),
        upload_service=UploadService(gateway),
        message_service=MessageService(gateway),
        notification_service=NotificationService(gateway),
        model_catalog=ModelCatalog(gateway),
    )
    return _services


def get_services() -> Services:
    if _services is None:
        raise RuntimeError("Services are not initialized")
    return _services


def get_gateway() -> DataGateway:
    return get_services().gateway


def get_session_guard() -> SessionGuard:
    return get_services().session_guard


def get_feed_engine() -> FeedQueryEngine:
    return get_services().feed_engine


def get_like_service() -> LikeService:
    return get_services().like_service


def get_content_service() -> ContentService:
    return get_services().content_service


def get_profile_service() -> ProfileService:
    return get_services().profile_service


def get_upload_service() -> UploadService:
    return get_services().upload_service


def get_message_service() -> MessageService:
    return get_services().message_service


def get_notification_service() -> NotificationService:
    return get_services().notification_service


def get_model_catalog() -> ModelCatalog:
    return get_services().model_catalog


# Auth

bearer_scheme = HTTPBearer(auto_error=False)


def get_access_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    return credentials.credentials if credentials else None


async def get_current_profile(
    token: Optional[str] = Depends(get_access_token),
    guard: SessionGuard = Depends(get_session_guard),
) -> Profile:
    """Profile of the authenticated viewer, or 401"""
    return await guard.resolve_session(token)


async def get_optional_profile(
    token: Optional[str] = Depends(get_access_token),
    guard: SessionGuard = Depends(get_session_guard),
) -> Optional[Profile]:
    """Profile of the viewer when a valid token was sent, else None"""
    if not token:
        return None
    try:
        return await guard.resolve_session(token)
    except AuthenticationError:
        return None
