"""
PostRepository for database operations on Post model
"""
from enum import Enum
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database_models import Post
from models.post import EXCERPT_LENGTH, AccessLevel, PostCreate


class PostRepository:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_posts(self, access_levels: Iterable[AccessLevel]) -> List[Post]:
        """Published posts within the given access levels, newest first."""
        levels = [level.value for level in access_levels]
        result = await self.db.execute(
            select(Post)
            .where(Post.published.is_(True), Post.access_level.in_(levels))
            .order_by(Post.created_at.desc(), Post.id.desc())
        )
        return list(result.scalars().all())

    async def get_post(self, post_id: int) -> Optional[Post]:
        result = await self.db.execute(select(Post).where(Post.id == post_id))
        return result.scalar_one_or_none()

    async def create_post(self, data: PostCreate, author_id: int) -> Post:
        post = Post(
            title=data.title,
            content=data.content,
            excerpt=data.excerpt if data.excerpt is not None else data.content[:EXCERPT_LENGTH],
            access_level=data.access_level.value,
            content_type=data.content_type.value,
            tags=list(data.tags),
            author_id=author_id,
        )
        self.db.add(post)
        await self.db.flush()
        await self.db.refresh(post)
        return post

    async def update_post(self, post: Post, fields: dict) -> Post:
        for key, value in fields.items():
            if isinstance(value, Enum):
                value = value.value
            setattr(post, key, value)
        await self.db.flush()
        await self.db.refresh(post)
        return post

    async def delete_post(self, post: Post) -> None:
        await self.db.delete(post)
        await self.db.flush()

    async def increment_views(self, post: Post) -> Post:
        """Atomically bump the view counter and reload the post."""
        await self.db.execute(
            update(Post)
            .where(Post.id == post.id)
            .values(views=Post.views + 1)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(post)
        return post
