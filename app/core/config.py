"""
Application configuration settings
FILE: app/core/config.py
"""
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # MongoDB Configuration
    mongodb_url: str = "mongodb://localhost:27017"
    database_name: str = "assessment_portal"

    # Collections
    questions_collection: str = "questions"
    exams_collection: str = "exams"
    exam_sections_collection: str = "exam_sections"
    practice_rules_collection: str = "practice_rules"
    sessions_collection: str = "assessment_sessions"
    attempts_collection: str = "question_attempts"
    streaks_collection: str = "learning_streaks"

    # Session engine
    tick_interval_seconds: float = 1.0
    auto_tick_enabled: bool = True
    time_warning_thresholds: List[int] = [600, 60]
    session_ttl_seconds: int = 4 * 3600

    # Practice defaults (used when no practice rule matches)
    practice_question_count: int = 10
    practice_easy_percentage: int = 40
    practice_medium_percentage: int = 40
    practice_hard_percentage: int = 20

    # API
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:4000",
    ]

    class Config:
        env_file = ".env"
        case_sensitive = False  # This allows case-insensitive matching
        extra = "allow"  # This allows extra fields


settings = Settings()
