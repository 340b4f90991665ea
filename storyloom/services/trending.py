"""
Trending-score job contract.

The scoring formula lives outside this service. A scorer is any callable
taking a published Story and returning a float; it is configured as a
dotted path in ``TRENDING_SCORER`` (``package.module:function``).
"""

import asyncio
import importlib
import logging
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storyloom.models.story import Story

logger = logging.getLogger(__name__)

Scorer = Callable[[Story], float]


def load_scorer(path: Optional[str]) -> Optional[Scorer]:
    if not path:
        return None
    module_name, _, attribute = path.partition(":")
    if not attribute:
        module_name, _, attribute = path.rpartition(".")
    module = importlib.import_module(module_name)
    return getattr(module, attribute)


async def run_trending_job(db: AsyncSession, scorer: Scorer) -> int:
    """Write ``trending_score`` for every published story. Returns the number scored."""
    result = await db.execute(select(Story).filter(Story.is_published.is_(True)))
    scored = 0
    for story in result.scalars():
        story.trending_score = float(scorer(story))
        scored += 1
    await db.flush()
    return scored


async def trending_loop(session_factory: async_sessionmaker, scorer: Scorer, interval_hours: float) -> None:
    while True:
        async with session_factory() as db:
            try:
                scored = await run_trending_job(db, scorer)
                await db.commit()
                logger.info(f"Trending scores updated for {scored} stories")
            except Exception as e:
                await db.rollback()
                logger.error(f"Trending job failed: {str(e)}")
        await asyncio.sleep(interval_hours * 3600)
