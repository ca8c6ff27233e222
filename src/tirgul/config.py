import os
from typing import Dict

from .models import QuestionType

DEFAULT_SECTION_COUNT = 10
DEFAULT_SECTION_DURATION = 600


def _env(name: str, default: str) -> str:
    return os.getenv(f"TIRGUL_{name}", default)


def _env_int(name: str, default: int) -> int:
    try:
        return int(_env(name, str(default)))
    except ValueError:
        return default


class Settings:
    PROJECT_NAME: str = "tirgul"
    DEBUG: bool = _env("DEBUG", "false").lower() == "true"
    LOG_DIR: str = _env("LOG_DIR", "log")
    LOG_FILE: str = _env("LOG_FILE", "tirgul.log")
    REDIS_URL: str = _env("REDIS_URL", "redis://localhost:6379/0")
    STORE_BACKEND: str = _env("STORE_BACKEND", "memory")
    QUESTION_BANK_DIR: str = _env("QUESTION_BANK_DIR", "questions")
    EXAM_SECTION_COUNTS: str = _env(
        "EXAM_SECTION_COUNTS",
        "VERBAL_ANALOGY:10,SHAPE_ANALOGY:10,INSTRUCTIONS_DIRECTIONS:10,QUANTITATIVE:10",
    )
    EXAM_SECTION_DURATIONS: str = _env(
        "EXAM_SECTION_DURATIONS",
        "VERBAL_ANALOGY:600,SHAPE_ANALOGY:600,INSTRUCTIONS_DIRECTIONS:600,QUANTITATIVE:600",
    )
    GUEST_PRACTICE_LIMIT_PER_TYPE: int = _env_int("GUEST_PRACTICE_LIMIT_PER_TYPE", 10)
    RECENT_QUESTIONS_CACHE_SIZE: int = _env_int("RECENT_QUESTIONS_CACHE_SIZE", 50)
    REGISTERED_PRACTICE_BATCH: int = 10
    REGISTERED_QUESTIONS_AVAILABLE: int = 100
    GUEST_COOKIE_NAME: str = "guest_id"
    USER_HEADER_NAME: str = "X-User-Id"
    LOCK_TIMEOUT_SECONDS: int = 10

    def section_counts(self) -> Dict[QuestionType, int]:
        return _with_defaults(
            parse_type_map(self.EXAM_SECTION_COUNTS), DEFAULT_SECTION_COUNT
        )

    def section_durations(self) -> Dict[QuestionType, int]:
        return _with_defaults(
            parse_type_map(self.EXAM_SECTION_DURATIONS), DEFAULT_SECTION_DURATION
        )


def parse_type_map(raw: str) -> Dict[QuestionType, int]:
    """Parses ``TYPE:value,TYPE:value``. Malformed entries are skipped."""
    parsed: Dict[QuestionType, int] = {}
    if not raw:
        return parsed
    for pair in raw.split(","):
        parts = pair.split(":")
        if len(parts) != 2:
            continue
        try:
            parsed[QuestionType(parts[0].strip())] = int(parts[1].strip())
        except ValueError:
            continue
    return parsed


def _with_defaults(values: Dict[QuestionType, int], default: int) -> Dict[QuestionType, int]:
    return {qtype: values.get(qtype, default) for qtype in QuestionType}


settings = Settings()
