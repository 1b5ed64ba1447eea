from __future__ import annotations
import os
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
    DATABASE_NAME: str = os.getenv("DATABASE_NAME", "vapex_store")
    SESSION_SECRET: str = os.getenv("SESSION_SECRET", "change-me-in-production")
    # Comma separated; these accounts get the admin role
    ADMIN_EMAILS: str = os.getenv("ADMIN_EMAILS", "")
    ADMIN_PASSWORD: Optional[str] = os.getenv("ADMIN_PASSWORD")
    UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "uploads")
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")

    @property
    def admin_emails(self) -> set[str]:
        return {e.strip().lower() for e in self.ADMIN_EMAILS.split(",") if e.strip()}


settings = Settings()
