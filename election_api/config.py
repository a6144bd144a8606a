"""Configuration management for the election API service."""
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Service configuration
    SERVICE_NAME: str = "election-api"
    API_VERSION: str = "v1"
    DEBUG: bool = False

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Storage backend: "postgres" or "memory"
    STORAGE_BACKEND: str = "postgres"

    # PostgreSQL configuration
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "election_db"
    POSTGRES_USER: str = "election_user"
    POSTGRES_PASSWORD: str = "election_pass"

    # Connection pools
    POSTGRES_POOL_MIN_SIZE: int = 2
    POSTGRES_POOL_MAX_SIZE: int = 10

    # Authentication
    JWT_SECRET: str = "change-me-to-a-long-random-secret-value-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRES_MINUTES: int = 60 * 24
    BCRYPT_ROUNDS: int = 12
    PASSWORD_MIN_LENGTH: int = 3

    # Bootstrap administrator, created on startup when both are set
    ADMIN_COMPANY_ID: Optional[str] = None
    ADMIN_PASSWORD: Optional[str] = None
    ADMIN_FIRST_NAME: str = "ELECTION"
    ADMIN_LAST_NAME: str = "ADMIN"

    # Candidates
    DEFAULT_PROFILE_PHOTO: str = "default.jpg"

    # Rate limiting
    RATE_LIMIT: str = "1000/second"
    AUTH_RATE_LIMIT: str = "100/second"

    # CORS settings
    CORS_ORIGINS: list = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list = ["*"]
    CORS_ALLOW_HEADERS: list = ["*"]

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def postgres_dsn(self) -> str:
        """Generate PostgreSQL connection string."""
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()
