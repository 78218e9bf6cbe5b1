"""
API Endpoints for Content, Profiles and Models.

This module defines the REST endpoints around content items: the paginated
feed, uploads, owner edits and deletes, likes and comments, plus profile
pages, follows and the generator-model dropdown.

Endpoints Provided:
- `GET /feed`: One feed page for the viewer (search, model filter, sort).
- `POST /items`: Multipart upload of a new content item.
- `PATCH /items/{item_id}` / `DELETE /items/{item_id}`: Owner edit and delete.
- `POST /items/{item_id}/like`: Like toggle.
- `GET|POST /items/{item_id}/comments`: Comments, oldest first.
- `GET /profiles/{handle}`, `PATCH /profiles/me`, `POST /profiles/{id}/follow`.
- `GET /models`: Searchable, paginated generator models.

Primary mutation failures are raised as `PinPromptException`s and rendered
inline by the application's exception handler.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import BaseModel

from core.content import OutputKind, SortMode
from core.exceptions import MutationInFlightError
from core.logging_config import log_function_call
from core.models import (
    CommentView,
    FeedItem,
    FeedPage,
    GeneratorModelView,
    LikeResult,
    Profile,
    ProfileSummary,
    ProfileView,
)
from services.feed_service import FeedFilters, FeedQueryEngine
from services.model_catalog import ModelCatalog
from services.mutation_service import ContentService, LikeService
from services.profile_service import ProfileService
from services.upload_service import UploadedFile, UploadService
from .dependencies import (
    get_content_service,
    get_current_profile,
    get_feed_engine,
    get_like_service,
    get_model_catalog,
    get_optional_profile,
    get_profile_service,
    get_upload_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Content"])


# Request/Response Models
class EditItemRequest(BaseModel):
    reflection: str = ""
    generation: str
    category: Optional[str] = None


class LikeRequest(BaseModel):
    currently_liked: bool


class CommentRequest(BaseModel):
    body: str


class FollowResponse(BaseModel):
    following: bool
    followers_count: int
    following_count: int


class ModelPage(BaseModel):
    models: List[GeneratorModelView]
    has_more: bool
    offset: int


async def _read_upload(upload: Optional[UploadFile]) -> Optional[UploadedFile]:
    if upload is None:
        return None
    return UploadedFile(filename=upload.filename or "", data=await upload.read())


# Feed
@router.get("/feed", response_model=FeedPage)
async def get_feed(
    offset: int = Query(0, ge=0),
    search: str = "",
    model: str = "",
    sort: SortMode = SortMode.RECENT,
    viewer: Optional[Profile] = Depends(get_optional_profile),
    engine: FeedQueryEngine = Depends(get_feed_engine),
):
    """One page of the feed, annotated with the viewer's likes"""
    filters = FeedFilters(search=search, model_contains=model, sort=sort)
    return await engine.load_page(viewer.id if viewer else None, offset, filters)


# Content items
@router.post("/items", response_model=FeedItem, status_code=201)
@log_function_call(logger)
async def create_item(
    generation: str = Form(...),
    output_type: OutputKind = Form(...),
    model_label: str = Form(...),
    reflection: str = Form(""),
    category: Optional[str] = Form(None),
    output_text: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    viewer: Profile = Depends(get_current_profile),
    uploads: UploadService = Depends(get_upload_service),
):
    """Share a new prompt and its output"""
    item = await uploads.create_item(
        viewer,
        reflection=reflection,
        generation=generation,
        output_type=output_type,
        model_label=model_label,
        category=category,
        output_text=output_text,
        file=await _read_upload(file),
    )
    return FeedItem.from_row(item)


@router.patch("/items/{item_id}", response_model=FeedItem)
@log_function_call(logger)
async def edit_item(
    item_id: str,
    request: EditItemRequest,
    viewer: Profile = Depends(get_current_profile),
    content: ContentService = Depends(get_content_service),
):
    """Owner edit of the reflection, prompt and category"""
    item = await content.edit_item(
        viewer, item_id, request.reflection, request.generation, request.category
    )
    return FeedItem.from_row(item)


@router.delete("/items/{item_id}", status_code=204)
@log_function_call(logger)
async def delete_item(
    item_id: str,
    viewer: Profile = Depends(get_current_profile),
    content: ContentService = Depends(get_content_service),
):
    await content.delete_item(viewer, item_id)


@router.post("/items/{item_id}/like", response_model=LikeResult)
async def toggle_like(
    item_id: str,
    request: LikeRequest,
    viewer: Profile = Depends(get_current_profile),
    likes: LikeService = Depends(get_like_service),
    content: ContentService = Depends(get_content_service),
):
    """Like or unlike an item"""
    item = await content.get_item(item_id)
    result = await likes.toggle_like(viewer, item_id, request.currently_liked, item.user_id)
    if result is None:
        raise MutationInFlightError("like toggle", item_id)
    return result


@router.get("/items/{item_id}/comments", response_model=List[CommentView])
async def list_comments(
    item_id: str, content: ContentService = Depends(get_content_service)
):
    await content.get_item(item_id)
    return await content.list_comments(item_id)


@router.post("/items/{item_id}/comments", response_model=CommentView, status_code=201)
async def add_comment(
    item_id: str,
    request: CommentRequest,
    viewer: Profile = Depends(get_current_profile),
    content: ContentService = Depends(get_content_service),
):
    return await content.add_comment(viewer, item_id, request.body)


# Profiles
@router.patch("/profiles/me", response_model=ProfileSummary)
@log_function_call(logger)
async def update_my_profile(
    bio: Optional[str] = Form(None),
    avatar: Optional[UploadFile] = File(None),
    viewer: Profile = Depends(get_current_profile),
    profiles: ProfileService = Depends(get_profile_service),
):
    """Update the viewer's bio and avatar"""
    profile = await profiles.update_profile(viewer, bio=bio, avatar=await _read_upload(avatar))
    return ProfileSummary.model_validate(profile)


@router.get("/profiles/{handle}", response_model=ProfileView)
async def get_profile(
    handle: str,
    viewer: Optional[Profile] = Depends(get_optional_profile),
    profiles: ProfileService = Depends(get_profile_service),
):
    return await profiles.get_profile(handle, viewer)


@router.post("/profiles/{profile_id}/follow", response_model=FollowResponse)
async def toggle_follow(
    profile_id: str,
    viewer: Profile = Depends(get_current_profile),
    profiles: ProfileService = Depends(get_profile_service),
):
    """Follow or unfollow a profile"""
    return await profiles.toggle_follow(viewer, profile_id)


# Generator models
@router.get("/models", response_model=ModelPage)
async def search_models(
    search: str = "",
    offset: int = Query(0, ge=0),
    catalog: ModelCatalog = Depends(get_model_catalog),
):
    """Searchable, paginated generator models for the upload form"""
    return await catalog.search(search, offset)
