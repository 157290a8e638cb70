import logging
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

TRELLIS_VERSION = "e8f6c45206993f297372f5436b90350817bd9b4a0d52d2a76df50c1c8afa2b3c"

DEFAULT_REMOTE_BASE_URL = "https://api.replicate.com/v1"
DEFAULT_IMAGE_MODEL = "google/imagen-4-ultra"
DEFAULT_MESH_MODEL = TRELLIS_VERSION
DEFAULT_CHAT_MODEL = "openai/gpt-4o"


def _truthy(value: Optional[str]) -> bool:
    return (value or "").lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    api_token: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 8080

    remote_base_url: str = DEFAULT_REMOTE_BASE_URL
    request_timeout: float = 15.0
    poll_interval: float = 2.0
    image_deadline: float = 120.0
    mesh_deadline: float = 180.0
    chat_wait: int = 60
    poll_retries: int = 0
    retry_backoff: float = 0.5

    image_model: str = DEFAULT_IMAGE_MODEL
    mesh_model: str = DEFAULT_MESH_MODEL
    chat_model: str = DEFAULT_CHAT_MODEL

    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"
    access_log: bool = True

    @property
    def has_credential(self) -> bool:
        return bool(self.api_token and self.api_token.strip())

    @classmethod
    def from_env(cls) -> "Settings":
        # .env never overrides values already exported in the process
        load_dotenv(override=False)
        env = os.environ
        origins = [o.strip() for o in env.get("DREAMY_CORS_ORIGINS", "*").split(",") if o.strip()]
        return cls(
            api_token=env.get("REPLICATE_API_TOKEN") or None,
            host=env.get("HOST", "0.0.0.0"),
            port=int(env.get("PORT", "8080")),
            remote_base_url=env.get("DREAMY_REMOTE_BASE_URL", DEFAULT_REMOTE_BASE_URL),
            request_timeout=float(env.get("DREAMY_REQUEST_TIMEOUT", "15")),
            poll_interval=float(env.get("DREAMY_POLL_INTERVAL", "2")),
            image_deadline=float(env.get("DREAMY_IMAGE_DEADLINE", "120")),
            mesh_deadline=float(env.get("DREAMY_MESH_DEADLINE", "180")),
            chat_wait=int(env.get("DREAMY_CHAT_WAIT", "60")),
            poll_retries=int(env.get("DREAMY_POLL_RETRIES", "0")),
            retry_backoff=float(env.get("DREAMY_RETRY_BACKOFF", "0.5")),
            image_model=env.get("DREAMY_IMAGE_MODEL", DEFAULT_IMAGE_MODEL),
            mesh_model=env.get("DREAMY_MESH_MODEL", DEFAULT_MESH_MODEL),
            chat_model=env.get("DREAMY_CHAT_MODEL", DEFAULT_CHAT_MODEL),
            cors_origins=origins or ["*"],
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            access_log=not _truthy(env.get("DREAMY_ACCESS_LOG_DISABLED")),
        )


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(message)s",
    )
