"""
Content Service - tier-gated reads and trainer-side post management
"""

import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from crud.post import PostRepository
from database_models import Post, User
from errors import Forbidden, NotFound, ValidationFailed
from models.post import PostCreate, PostUpdate
from models.subscription import UserRole
from services.tier_policy import denial_reason, resolve_tier, visible_levels

logger = logging.getLogger(__name__)

AUTHOR_ROLES = {UserRole.TRAINER.value, UserRole.ADMIN.value}

# Post columns that may not be cleared by an update
NON_NULLABLE_FIELDS = {"title", "content", "access_level", "content_type", "tags", "published"}


class ContentService:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.post_repo = PostRepository(db)

    async def list_content(self, user: Optional[User]) -> List[Post]:
        """Published posts the requester's tier can see; anonymous callers see public posts only."""
        return await self.post_repo.list_posts(visible_levels(resolve_tier(user)))

    async def view_item(self, user: Optional[User], post_id: int) -> Post:
        """
        Return a post and count the view.

        Raises:
            NotFound: no such post, or an unpublished post seen by someone other than its author
            Forbidden: tier too low; data carries requiredTier and currentTier
        """
        post = await self.post_repo.get_post(post_id)
        if post is None or (not post.published and not self._is_author(user, post)):
            raise NotFound("Post not found")

        tier = resolve_tier(user)
        denial = denial_reason(tier, post.access_level)
        if denial is not None:
            raise Forbidden("Subscription required to view this content", data=denial)

        return await self.post_repo.increment_views(post)

    @staticmethod
    def _is_author(user: Optional[User], post: Post) -> bool:
        return user is not None and user.id == post.author_id

    @staticmethod
    def _require_author_role(user: User) -> None:
        if user.role not in AUTHOR_ROLES:
            raise Forbidden("Access denied. Trainer privileges required.")

    async def _owned_post(self, user: User, post_id: int, action: str) -> Post:
        self._require_author_role(user)
        post = await self.post_repo.get_post(post_id)
        if post is None:
            raise NotFound("Post not found")
        if post.author_id != user.id:
            raise Forbidden(f"Not authorized to {action} this post")
        return post

    async def create_post(self, user: User, data: PostCreate) -> Post:
        self._require_author_role(user)
        post = await self.post_repo.create_post(data, author_id=user.id)
        logger.info(f"Post {post.id} created by user {user.id} ({post.access_level})")
        return post

    async def update_post(self, user: User, post_id: int, data: PostUpdate) -> Post:
        post = await self._owned_post(user, post_id, "update")
        fields = data.provided()
        for name in NON_NULLABLE_FIELDS & fields.keys():
            value = fields[name]
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ValidationFailed(f"{name} cannot be empty")
        post = await self.post_repo.update_post(post, fields)
        logger.info(f"Post {post.id} updated by user {user.id}: {sorted(fields)}")
        return post

    async def delete_post(self, user: User, post_id: int) -> None:
        post = await self._owned_post(user, post_id, "delete")
        await self.post_repo.delete_post(post)
        logger.info(f"Post {post_id} deleted by user {user.id}")
