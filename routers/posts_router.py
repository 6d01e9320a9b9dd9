"""
Posts Router - tier-gated content endpoints

Reads use CredentialPolicy.OPTIONAL: a missing or bad token means the caller
is anonymous and sees public posts only. Writes use CredentialPolicy.REQUIRED.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth import optional_user, require_user
from backend.utils.responses import success_response
from database import get_db
from database_models import User
from models.post import PostCreate, PostOut, PostUpdate
from services.content_service import ContentService
from services.tier_policy import resolve_tier

router = APIRouter(prefix="/api/posts", tags=["posts"])


@router.get("")
async def list_posts(user: Optional[User] = Depends(optional_user), db: AsyncSession = Depends(get_db)):
    """List published posts visible at the caller's tier"""
    posts = await ContentService(db).list_content(user)
    return success_response({
        "posts": [PostOut.model_validate(post).to_response() for post in posts],
        "userTier": resolve_tier(user).value,
        "totalCount": len(posts),
    })


@router.get("/{post_id}")
async def get_post(post_id: int, user: Optional[User] = Depends(optional_user), db: AsyncSession = Depends(get_db)):
    """Get a single post; 403 with requiredTier/currentTier when the caller's tier is too low"""
    post = await ContentService(db).view_item(user, post_id)
    return success_response({"post": PostOut.model_validate(post).to_response()})


@router.post("")
async def create_post(body: PostCreate, user: User = Depends(require_user), db: AsyncSession = Depends(get_db)):
    """Create a post (trainer or admin)"""
    post = await ContentService(db).create_post(user, body)
    return success_response(
        {"post": PostOut.model_validate(post).to_response()},
        message="Post created successfully",
        status=201,
    )


@router.put("/{post_id}")
async def update_post(
    post_id: int,
    body: PostUpdate,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Update the fields sent in the body of a post the caller wrote"""
    post = await ContentService(db).update_post(user, post_id, body)
    return success_response(
        {"post": PostOut.model_validate(post).to_response()},
        message="Post updated successfully",
    )


@router.delete("/{post_id}")
async def delete_post(post_id: int, user: User = Depends(require_user), db: AsyncSession = Depends(get_db)):
    await ContentService(db).delete_post(user, post_id)
    return success_response(message="Post deleted successfully")
