from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Environment variables take precedence over the optional .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration - required
    DATABASE_URL: str

    # Logging Configuration - required
    LOG_LEVEL: str

    # Token signing - required
    SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    # 0 means tokens are issued without an expiry claim
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 0

    # Password hashing work factor (PBKDF2 iterations)
    PASSWORD_HASH_ITERATIONS: int = 100_000


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
