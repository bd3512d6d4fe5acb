import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Settings:
    # Database
    database_url: str = os.getenv("SQLALCHEMY_DATABASE_URL", "sqlite:///./library.db")
    pool_size: int = int(os.getenv("DB_POOL_SIZE", "10"))
    pool_timeout: int = int(os.getenv("DB_POOL_TIMEOUT", "5"))

    # Security
    bcrypt_rounds: int = int(os.getenv("BCRYPT_ROUNDS", "12"))

    # Server
    host: str = os.getenv("APP_HOST", "0.0.0.0")
    port: int = int(os.getenv("APP_PORT", "8000"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Bootstrap admin, created on start-up when both are set
    admin_username: Optional[str] = os.getenv("ADMIN_USERNAME")
    admin_password: Optional[str] = os.getenv("ADMIN_PASSWORD")
    admin_email: str = os.getenv("ADMIN_EMAIL", "admin@library.local")

    # Page sizes
    catalog_page_size: int = 24
    page_size: int = 10
    top_books_limit: int = 5
    top_users_limit: int = 10


settings = Settings()
