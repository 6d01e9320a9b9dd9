"""
UserRepository for database operations on User model
"""

import logging
from typing import Awaitable, Callable, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError
from database_models import User
from models.subscription import SubscriptionStatus, SubscriptionTier, SubscriptionUpdate, UserRole

logger = logging.getLogger(__name__)

# Optimistic writes give up after this many version conflicts
MAX_WRITE_ATTEMPTS = 3


class ConcurrentUpdateError(RuntimeError):
    """A record kept changing underneath an optimistic write."""


class UserRepository:
    """
    Repository class for User database operations.
    Encapsulates all database logic for the User model.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            db: AsyncSession instance for database operations
        """
        self.db = db

    async def _one(self, *criteria, refresh: bool = False) -> Optional[User]:
        statement = select(User).where(*criteria)
        if refresh:
            # Overwrite any identity-map copy with the row as it is now
            statement = statement.execution_options(populate_existing=True)
        result = await self.db.execute(statement)
        return result.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """
        Retrieve a user by email address.

        Args:
            email: User's email address (case-insensitive search)

        Returns:
            User object if found, None otherwise
        """
        return await self._one(User.email == email.lower())

    async def get_user_by_id(self, user_id: int, refresh: bool = False) -> Optional[User]:
        return await self._one(User.id == user_id, refresh=refresh)

    async def get_user_by_subscription_id(self, subscription_id: str, refresh: bool = False) -> Optional[User]:
        """Resolve the single record holding a provider subscription id."""
        return await self._one(User.stripe_subscription_id == subscription_id, refresh=refresh)

    async def get_user_by_customer_id(self, customer_id: str, refresh: bool = False) -> Optional[User]:
        """Resolve the single record holding a provider customer id."""
        return await self._one(User.stripe_customer_id == customer_id, refresh=refresh)

    async def create_user(self, user_data: dict) -> User:
        """
        Create a new user in the database.

        New users start without a subscription: tier "none", status "inactive".

        Args:
            user_data: Dictionary containing user data. Must include:
                - email: str
                - hashed_password: str
                Optional:
                - name: str
                - role: UserRole (defaults to user)

        Returns:
            Created User object
        """
        user = User(
            email=user_data["email"].lower(),
            name=user_data.get("name"),
            hashed_password=user_data["hashed_password"],
            role=UserRole(user_data.get("role", UserRole.USER)).value,
            is_active=user_data.get("is_active", True),
            subscription_tier=SubscriptionTier.NONE.value,
            subscription_status=SubscriptionStatus.INACTIVE.value,
        )
        self.db.add(user)
        await self.db.flush()  # Flush to get the ID without committing
        await self.db.refresh(user)  # Refresh to get the generated ID
        return user

    async def apply_update(self, user: User, update: SubscriptionUpdate) -> User:
        """
        Apply the fields explicitly present in a subscription update.

        The flush is a versioned UPDATE; a concurrent writer surfaces here as
        sqlalchemy.orm.exc.StaleDataError.
        """
        for key, value in update.provided().items():
            if isinstance(value, (SubscriptionTier, SubscriptionStatus)):
                value = value.value
            setattr(user, key, value)

        await self.db.flush()
        return user

    async def update_with_retry(
        self,
        load: Callable[[bool], Awaitable[Optional[User]]],
        build: Callable[[User], Optional[SubscriptionUpdate]],
        attempts: int = MAX_WRITE_ATTEMPTS,
    ) -> Optional[User]:
        """
        Optimistic read-modify-write of one subscription record.

        `load(refresh)` finds the record (None ends the write as a no-op) and
        `build(user)` derives the update from what was read (None means
        nothing to change). A version conflict rolls the session back and
        starts over from a fresh read.
        """
        for attempt in range(1, attempts + 1):
            user = await load(attempt > 1)
            if user is None:
                return None
            update = build(user)
            if update is None:
                return user
            # The failed flush expires the instance; read the key beforehand
            user_id = user.id
            try:
                return await self.apply_update(user, update)
            except StaleDataError:
                await self.db.rollback()
                logger.warning(f"Version conflict on user {user_id} (attempt {attempt}/{attempts}), retrying")
        raise ConcurrentUpdateError(f"Gave up updating subscription record after {attempts} attempts")
