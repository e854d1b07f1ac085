import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List

from dotenv import load_dotenv


def _load_env():
    # Current directory first, then backend/.env which wins if present
    load_dotenv()
    backend_env = os.path.join(os.path.dirname(os.path.abspath(__file__)), '..', '.env')
    if os.path.exists(backend_env):
        load_dotenv(backend_env, override=True)


def _split_origins(value: str) -> List[str]:
    return [origin.strip() for origin in value.split(',') if origin.strip()]


@dataclass(frozen=True)
class Settings:
    anthropic_api_key: str = ""
    model: str = "claude-sonnet-4-20250514"
    max_output_tokens: int = 16000
    generation_timeout: float = 120  # seconds

    # Capture defaults
    page_load_timeout: int = 30000  # milliseconds
    network_idle_timeout: int = 5000  # milliseconds
    viewport_width: int = 1280
    viewport_height: int = 800

    cors_origins: List[str] = field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:3001"]
    )
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            anthropic_api_key=os.getenv('ANTHROPIC_API_KEY', ''),
            model=os.getenv('CLAUDE_MODEL', defaults.model),
            max_output_tokens=int(os.getenv('MAX_OUTPUT_TOKENS', defaults.max_output_tokens)),
            generation_timeout=float(os.getenv('GENERATION_TIMEOUT', defaults.generation_timeout)),
            page_load_timeout=int(os.getenv('PAGE_LOAD_TIMEOUT', defaults.page_load_timeout)),
            network_idle_timeout=int(os.getenv('NETWORK_IDLE_TIMEOUT', defaults.network_idle_timeout)),
            viewport_width=int(os.getenv('VIEWPORT_WIDTH', defaults.viewport_width)),
            viewport_height=int(os.getenv('VIEWPORT_HEIGHT', defaults.viewport_height)),
            cors_origins=_split_origins(os.getenv('CORS_ORIGINS', ','.join(defaults.cors_origins))),
            log_level=os.getenv('LOG_LEVEL', defaults.log_level).upper(),
        )


@lru_cache()
def get_settings() -> Settings:
    _load_env()
    return Settings.from_env()
