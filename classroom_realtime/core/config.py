# classroom_realtime/core/config.py
import os
import uuid
from typing import List, Literal
from dotenv import load_dotenv

class Settings:
    """
    Setup environment variables.
        - PUB_SUB_SERVICE the fan-out backend: "local", "redis" or "google_pub_sub"
        - REDIS_URL redis used for the shared bus, leaderboard and shared rate limit
        - PROJECT_ID / TOPIC_ID / SUBSCRIPTION_ID the Google Pub/Sub coordinates
        - MONGO_URL / DB_NAME the durable message and membership store
        - JWT_SECRET / JWT_ALGORITHM the signed handshake credential
    """

    # Load environment variables from the .env file
    load_dotenv()

    PUB_SUB_SERVICE: Literal["local", "redis", "google_pub_sub"] = os.getenv("PUB_SUB_SERVICE", "local")
    INSTANCE_ID: str = os.getenv("INSTANCE_ID", uuid.uuid4().hex)
    FANOUT_CHANNEL: str = os.getenv("FANOUT_CHANNEL", "realtime:events")

    REDIS_URL: str = os.getenv("REDIS_URL", "")

    PROJECT_ID = os.getenv("PROJECT_ID", "")
    TOPIC_ID = os.getenv("TOPIC_ID", "")
    SUBSCRIPTION_ID = os.getenv("SUBSCRIPTION_ID", "")

    MONGO_URL: str = os.getenv("MONGO_URL", "mongodb://localhost:27017")
    DB_NAME: str = os.getenv("DB_NAME", "classroom")

    JWT_SECRET: str = os.getenv("JWT_SECRET", "change-me")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")

    CLIENT_URL: List[str] = [o.strip() for o in os.getenv("CLIENT_URL", "*").split(",") if o.strip()]

    AUTH_TIMEOUT_SECONDS: float = float(os.getenv("AUTH_TIMEOUT_SECONDS", "10"))
    SEND_TIMEOUT_SECONDS: float = float(os.getenv("SEND_TIMEOUT_SECONDS", "5"))

    RATE_LIMIT_BACKEND: Literal["memory", "redis"] = os.getenv("RATE_LIMIT_BACKEND", "memory")
    RATE_LIMIT_MAX_MESSAGES: int = int(os.getenv("RATE_LIMIT_MAX_MESSAGES", "10"))
    RATE_LIMIT_WINDOW_MS: int = int(os.getenv("RATE_LIMIT_WINDOW_MS", "60000"))
    RATE_LIMIT_SWEEP_SECONDS: float = float(os.getenv("RATE_LIMIT_SWEEP_SECONDS", "60"))

    LEADERBOARD_TTL_SECONDS: int = int(os.getenv("LEADERBOARD_TTL_SECONDS", "172800"))
    LEADERBOARD_TOP_N: int = int(os.getenv("LEADERBOARD_TOP_N", "3"))

    HISTORY_PAGE_SIZE: int = int(os.getenv("HISTORY_PAGE_SIZE", "50"))

    UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "uploads")
    UPLOAD_BASE_URL: str = os.getenv("UPLOAD_BASE_URL", "/uploads")

settings = Settings()
