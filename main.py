import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from config import LOG_LEVEL, TRENDING_SCORER, TRENDING_INTERVAL_HOURS
from database import AsyncSessionLocal, create_tables
from storyloom.routes import admin, announcement, chapter, comment, notification, story, user
from storyloom.services.notifications import deliver_pending
from storyloom.services.trending import load_scorer, trending_loop
from storyloom.utils.exceptions import StoryloomError

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="Storyloom API")

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoryloomError)
async def storyloom_error_handler(request: Request, exc: StoryloomError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


app.include_router(user.router, prefix="/users", tags=["Users"])
app.include_router(story.router, prefix="/stories", tags=["Stories"])
app.include_router(chapter.router, prefix="/chapters", tags=["Chapters"])
app.include_router(comment.router, prefix="/comments", tags=["Comments"])
app.include_router(notification.router, prefix="/notifications", tags=["Notifications"])
app.include_router(announcement.router, prefix="/announcements", tags=["Announcements"])
app.include_router(admin.router, prefix="/admin", tags=["Moderation"])


@app.on_event("startup")
async def startup_event():
    await create_tables()

    # Jobs left over from a previous run
    summary = await deliver_pending(AsyncSessionLocal)
    if summary["delivered"] or summary["failed"]:
        logger.info(f"Startup outbox drain: {summary}")

    scorer = load_scorer(TRENDING_SCORER)
    if scorer is not None:
        app.state.trending_task = asyncio.create_task(
            trending_loop(AsyncSessionLocal, scorer, TRENDING_INTERVAL_HOURS)
        )
        logger.info(f"Trending job scheduled every {TRENDING_INTERVAL_HOURS} hours")


@app.on_event("shutdown")
async def shutdown_event():
    task = getattr(app.state, "trending_task", None)
    if task is not None:
        task.cancel()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
