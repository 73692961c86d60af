from __future__ import annotations
import os
from typing import List, Literal, Optional

from pydantic import BaseModel


def get_data_dir() -> str:
    base = os.getenv("QUIZ_DATA_DIR")
    if not base:
        base = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "data"))
    os.makedirs(base, exist_ok=True)
    return base


class Settings(BaseModel):
    database_url: str
    admin_secret: str = "changeme"
    admission_mode: Literal["direct", "lobby"] = "direct"
    join_code_length: int = 6
    leaderboard_size: int = 20
    cors_origins: List[str] = ["*"]
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"
    socketio_path: str = "/ws/socket.io"


def load_settings(database_url: Optional[str] = None) -> Settings:
    url = database_url or os.getenv("DATABASE_URL")
    if not url:
        url = "sqlite:///" + os.path.join(get_data_dir(), "quiz.db")
    origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    return Settings(
        database_url=url,
        admin_secret=os.getenv("ADMIN_SECRET", "changeme"),
        admission_mode=os.getenv("ADMISSION_MODE", "direct").strip().lower(),
        join_code_length=int(os.getenv("JOIN_CODE_LENGTH", "6")),
        leaderboard_size=int(os.getenv("LEADERBOARD_SIZE", "20")),
        cors_origins=origins or ["*"],
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3000")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
