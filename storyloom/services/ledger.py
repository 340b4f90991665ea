"""
Counter ledger.

Every denormalized counter (chapter views/likes/comments, story totals,
comment reactions, announcement replies) changes only through this module.
Each adjustment is a single UPDATE evaluated by the database, clamped at zero,
so concurrent adjustments never lose increments and decrements never go
negative.
"""

import logging
from typing import Dict

from sqlalchemy import case, update
from sqlalchemy.ext.asyncio import AsyncSession

from storyloom.models.announcement import Announcement
from storyloom.models.chapter import Chapter
from storyloom.models.comment import Comment
from storyloom.models.story import Story

logger = logging.getLogger(__name__)

COUNTERS = {
    Story: frozenset({"total_chapters", "total_views", "total_likes", "total_comments"}),
    Chapter: frozenset({"views", "likes", "comments"}),
    Comment: frozenset({"likes", "dislikes"}),
    Announcement: frozenset({"reply_count"}),
}


def _clamped(column, delta: int):
    value = column + delta
    return case((value < 0, 0), else_=value)


async def adjust_many(db: AsyncSession, entity, deltas: Dict[str, int]) -> None:
    """Apply several counter deltas to one row in a single statement."""
    model = type(entity)
    allowed = COUNTERS.get(model)
    if allowed is None:
        raise ValueError(f"{model.__name__} has no ledger counters")
    unknown = set(deltas) - allowed
    if unknown:
        raise ValueError(f"Not a {model.__name__} counter: {', '.join(sorted(unknown))}")

    changes = {field: delta for field, delta in deltas.items() if delta}
    if not changes:
        return

    values = {field: _clamped(getattr(model, field), delta) for field, delta in changes.items()}
    await db.execute(
        update(model)
        .where(model.id == entity.id)
        .values(values)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(entity, attribute_names=list(changes))
    logger.debug(f"Ledger {model.__name__} {entity.id}: {changes}")


async def adjust(db: AsyncSession, entity, field: str, delta: int) -> None:
    await adjust_many(db, entity, {field: delta})


async def increment(db: AsyncSession, entity, field: str) -> None:
    await adjust_many(db, entity, {field: 1})


async def decrement(db: AsyncSession, entity, field: str) -> None:
    await adjust_many(db, entity, {field: -1})
