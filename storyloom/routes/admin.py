from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from starlette import status

from storyloom.models.user import User
from storyloom.services import notifications, reconcile
from dependencies import get_db, get_moderator, get_session_factory, logger

router = APIRouter()


@router.post("/reconcile")
async def reconcile_counters(
    moderator: User = Depends(get_moderator),
    db: AsyncSession = Depends(get_db)
):
    """Recompute denormalized counters from the underlying rows."""
    try:
        report = await reconcile.reconcile_all(db)
        await db.commit()
        logger.info(f"Moderator {moderator.id} ran reconciliation: {report['stories_fixed']} stories fixed")
        return report

    except Exception as e:
        await db.rollback()
        logger.error(f"Error during reconciliation: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Reconciliation failed"
        )


@router.post("/outbox/drain")
async def drain_outbox(
    moderator: User = Depends(get_moderator),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """Deliver pending notification jobs now."""
    summary = await notifications.deliver_pending(session_factory)
    logger.info(f"Moderator {moderator.id} drained the outbox: {summary}")
    return summary
