"""Customer-id linking between Lemon Squeezy customers and local users.

Works inside a caller-owned session; nothing here commits.
"""

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import UserNotFoundError
from app.db.models.user import User

logger = structlog.get_logger(__name__)


async def find_user_by_customer_id(session: AsyncSession, customer_id: str) -> User | None:
    """Find the user linked to ``customer_id``.

    Falls back to treating ``customer_id`` as a local user id, which covers events
    that arrive before any link was stored.
    """
    result = await session.execute(
        select(User).where(User.lemon_squeezy_customer_id == customer_id).order_by(User.created_at).limit(1)
    )
    user = result.scalar_one_or_none()
    if user is None:
        user = await session.get(User, customer_id)

    if user is None:
        logger.warning("user_not_found_for_customer", customer_id=customer_id)
    return user


class CustomerLinker:
    """Stores the first customer id seen for a user and guards against silent re-linking."""

    def __init__(self, session: AsyncSession, overwrite: bool = False):
        """
        Args:
            session: Session of the surrounding transaction
            overwrite: Replace a different stored customer id instead of keeping it
        """
        self.session = session
        self.overwrite = overwrite

    async def _other_holder(self, user_id: str, customer_id: str) -> User | None:
        result = await self.session.execute(
            select(User)
            .where(User.lemon_squeezy_customer_id == customer_id, User.id != user_id)
            .order_by(User.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def link(self, user_id: str, customer_id: int | str, source: str) -> User:
        """Link ``customer_id`` to ``user_id``. Repeating the same link is a no-op.

        A customer id belongs to one user at a time. When the user already holds a
        different id, or another user holds this one, the existing link wins unless
        ``overwrite`` is set.

        Raises:
            UserNotFoundError: no user with ``user_id``
        """
        customer_id = str(customer_id)
        user = await self.session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        current = user.lemon_squeezy_customer_id
        if current == customer_id:
            logger.debug("customer_id_confirmed", user_id=user_id, customer_id=customer_id, source=source)
            return user

        holder = await self._other_holder(user_id, customer_id)
        if (current or holder is not None) and not self.overwrite:
            logger.warning(
                "customer_id_conflict",
                user_id=user_id,
                stored_customer_id=current,
                incoming_customer_id=customer_id,
                holder_user_id=holder.id if holder is not None else None,
                source=source,
            )
            return user

        if holder is not None:
            holder.lemon_squeezy_customer_id = None
            logger.warning(
                "customer_id_moved",
                customer_id=customer_id,
                from_user_id=holder.id,
                to_user_id=user_id,
                source=source,
            )
        if current:
            logger.warning(
                "customer_id_overwritten",
                user_id=user_id,
                previous_customer_id=current,
                customer_id=customer_id,
                source=source,
            )

        user.lemon_squeezy_customer_id = customer_id
        await self.session.flush()
        logger.info("customer_id_linked", user_id=user_id, customer_id=customer_id, source=source)
        return user
