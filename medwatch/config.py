import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


def _bool_env(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _float_env(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return float(v)


@dataclass(frozen=True)
class Settings:
    demo_password: str
    allow_logging: bool
    model_name: str
    llm_provider: str
    openai_api_key: Optional[str]
    llm_timeout_seconds: float
    database_url: str
    questionnaire_path: Optional[str]

    @property
    def require_password(self) -> bool:
        return bool(self.demo_password)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(
        demo_password=os.getenv("DEMO_PASSWORD", "").strip(),  # optional
        allow_logging=_bool_env("ALLOW_LOGGING", default=False),  # do NOT log PHI by default
        model_name=os.getenv("MODEL_NAME", "gpt-4o-mini"),
        llm_provider=os.getenv("LLM_PROVIDER", "openai").strip().lower(),  # "openai" or "mock"
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        llm_timeout_seconds=_float_env("LLM_TIMEOUT_SECONDS", 20.0),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./medwatch_reports.db"),
        questionnaire_path=os.getenv("QUESTIONNAIRE_PATH") or None,
    )
