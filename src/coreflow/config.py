"""Configuration loading from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv


@dataclass
class Config:
    email_backend: str = "console"
    sendgrid_api_key: str = ""
    email_from: str = "recruiter@example.com"
    email_from_name: str = "Recruiter"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""

    db_path: Path = field(default_factory=lambda: Path("coreflow.db"))

    # Base URL for links placed in candidate emails
    frontend_url: str = "https://www.coreflowhr.com"
    offer_token_days: int = 60

    jwt_secret: str = "coreflow-dev-secret-change-me"
    jwt_algorithm: str = "HS256"

    sweep_interval_seconds: int = 60
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.db_path = Path(self.db_path)
        self.frontend_url = self.frontend_url.rstrip("/")


def load_config(env_file: str | None = None) -> Config:
    """Load configuration from .env file and environment variables."""
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    return Config(
        email_backend=os.getenv("EMAIL_BACKEND", "console"),
        sendgrid_api_key=os.getenv("SENDGRID_API_KEY", ""),
        email_from=os.getenv("EMAIL_FROM", "recruiter@example.com"),
        email_from_name=os.getenv("EMAIL_FROM_NAME", "Recruiter"),
        smtp_host=os.getenv("SMTP_HOST", ""),
        smtp_port=int(os.getenv("SMTP_PORT", "587")),
        smtp_username=os.getenv("SMTP_USERNAME", ""),
        smtp_password=os.getenv("SMTP_PASSWORD", ""),
        db_path=Path(os.getenv("COREFLOW_DB_PATH", "coreflow.db")),
        frontend_url=os.getenv("FRONTEND_URL", "https://www.coreflowhr.com"),
        offer_token_days=int(os.getenv("OFFER_TOKEN_DAYS", "60")),
        jwt_secret=os.getenv("JWT_SECRET", "coreflow-dev-secret-change-me"),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        sweep_interval_seconds=int(os.getenv("SWEEP_INTERVAL_SECONDS", "60")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
