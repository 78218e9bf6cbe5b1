"""
Profile Service

Profile pages, follow toggling and profile edits (bio and avatar).
"""

import logging
from typing import Any, Dict, Optional

from core.content import NotificationKind
from core.exceptions import ProfileNotFoundError, ValidationError
from core.models import FeedItem, Profile, ProfileSummary, ProfileView
from providers.gateway import DataGateway
from services.feed_service import FeedQueryEngine
from services.notification_service import notify
from services.upload_service import AVATAR_BUCKET, UploadedFile, file_extension, random_name, store_file

logger = logging.getLogger(__name__)

BIO_MAX_LENGTH = 2000


class ProfileService:
    def __init__(self, gateway: DataGateway, feed_engine: FeedQueryEngine):
        self.gateway = gateway
        self.feed_engine = feed_engine

    async def get_profile(self, handle: str, viewer: Optional[Profile] = None) -> ProfileView:
        """Profile by username with its items, newest first"""
        profile = await self.gateway.table("profiles").eq("username", handle).first()
        if profile is None:
            raise ProfileNotFoundError(handle)

        is_following = False
        if viewer is not None and viewer.id != profile.id:
            edges = await (
                self.gateway.table("follows")
                .eq("follower_id", viewer.id)
                .eq("following_id", profile.id)
                .count()
            )
            is_following = edges > 0

        rows = await (
            self.gateway.table("content_items")
            .eq("user_id", profile.id)
            .order("created_at", descending=True)
            .select()
        )
        liked = await self.feed_engine.liked_item_ids(
            viewer.id if viewer else None, [row.id for row in rows]
        )

        return ProfileView(
            **ProfileSummary.model_validate(profile).model_dump(),
            bio=profile.bio,
            created_at=profile.created_at,
            is_following=is_following,
            items=[FeedItem.from_row(row, is_liked=row.id in liked) for row in rows],
        )

    async def toggle_follow(self, viewer: Profile, target_id: str) -> Dict[str, Any]:
        target = await self.gateway.table("profiles").eq("id", target_id).first()
        if target is None:
            raise ProfileNotFoundError(target_id)

        result = await self.gateway.rpc(
            "toggle_follow", {"follower_id": viewer.id, "following_id": target_id}
        )
        logger.info(
            f"{viewer.username} {'followed' if result['following'] else 'unfollowed'} {target.username}"
        )

        if result["following"]:
            await notify(
                self.gateway,
                recipient=target_id,
                kind=NotificationKind.FOLLOW,
                title="New Follower",
                body=f"{viewer.username} started following you",
                related_id=viewer.id,
            )
        return result

    async def update_profile(
        self,
        viewer: Profile,
        bio: Optional[str] = None,
        avatar: Optional[UploadedFile] = None,
    ) -> Profile:
        values: Dict[str, Any] = {}
        if bio is not None:
            bio = bio.strip()
            if len(bio) > BIO_MAX_LENGTH:
                raise ValidationError("bio", f"{len(bio)} characters", f"exceeds {BIO_MAX_LENGTH} characters")
            values["bio"] = bio or None

        if avatar is not None and avatar.data:
            path = f"{viewer.id}/{random_name(file_extension(avatar.filename, 'png'))}"
            values["avatar_url"] = await store_file(self.gateway, AVATAR_BUCKET, path, avatar.data)

        if not values:
            return viewer

        rows = await self.gateway.table("profiles").eq("id", viewer.id).update(values)
        logger.info(f"Profile {viewer.username} updated: {', '.join(values)}")
        return rows[0]
