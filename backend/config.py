# backend/config.py
from pydantic_settings import BaseSettings
from typing import ClassVar
from pathlib import Path

# Resolve absolute path to the .env file for reliable loading
env_path = Path(__file__).parent.parent / ".env"

class Settings(BaseSettings):
    SECRET_KEY: str = "dev-secret-change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    DATABASE_URL: str = "sqlite:///./procurement.db"

    FRONTEND_URL: str = "http://localhost:8081"
    # Public backend URL used when building blob store links
    BACKEND_URL: str = "http://127.0.0.1:8000"
    # Bind address for the bundled uvicorn runner
    HOST: str = "127.0.0.1"
    PORT: int = 8000

    # Negotiation defaults
    DEFAULT_CURRENCY: str = "INR"

    # Invoice terms applied on acceptance unless the accept request overrides them
    INVOICE_TAX_RATE: float = 0.0   # percent
    INVOICE_DISCOUNT: float = 0.0   # fixed amount
    INVOICE_DUE_DAYS: int = 30

    # Blob storage (local disk, served under UPLOAD_URL_PREFIX)
    UPLOAD_DIR: str = "static/uploads"
    UPLOAD_URL_PREFIX: str = "/uploads"

    # Realtime client
    CLIENT_TIMEOUT_SECONDS: float = 10.0

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file: ClassVar[str] = str(env_path)
        extra: ClassVar[str] = "ignore"

settings = Settings()
