import os
from dotenv import load_dotenv

load_dotenv()

SECRET_KEY = os.getenv("SECRET_KEY", "storyloom-development-secret-key-change-me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./storyloom.db")
ACCESS_TOKEN_EXPIRE_MINUTES = os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() in ("1", "true", "yes")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Moderation
COMMENT_HIDE_THRESHOLD = int(os.getenv("COMMENT_HIDE_THRESHOLD", "10"))

# Notification outbox
NOTIFICATION_MAX_ATTEMPTS = int(os.getenv("NOTIFICATION_MAX_ATTEMPTS", "5"))
NOTIFICATION_BATCH_SIZE = int(os.getenv("NOTIFICATION_BATCH_SIZE", "50"))

# Trending job, e.g. "mypackage.scoring:score_story"
TRENDING_SCORER = os.getenv("TRENDING_SCORER")
TRENDING_INTERVAL_HOURS = float(os.getenv("TRENDING_INTERVAL_HOURS", "3"))

# Flood protection (time windows in minutes)
STORY_FLOOD_MAX = int(os.getenv("STORY_FLOOD_MAX", "5"))
STORY_FLOOD_WINDOW_MINUTES = int(os.getenv("STORY_FLOOD_WINDOW_MINUTES", "20"))
CHAPTER_FLOOD_MAX = int(os.getenv("CHAPTER_FLOOD_MAX", "10"))
CHAPTER_FLOOD_WINDOW_MINUTES = int(os.getenv("CHAPTER_FLOOD_WINDOW_MINUTES", "20"))
