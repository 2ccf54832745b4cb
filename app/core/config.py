from typing import List
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "Storefront Cart API"
    DATABASE_URL: str = "sqlite:///./storefront.db"
    SECRET_KEY: str = "supersecretkey_change_me_in_production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7 # 1 week

    # Guest cart cookie
    GUEST_SESSION_COOKIE: str = "session_id"
    GUEST_SESSION_MAX_AGE_DAYS: int = 30
    COOKIE_SECURE: bool = False
    COOKIE_SAMESITE: str = "lax"

    # Largest quantity a single cart line may hold
    MAX_LINE_QUANTITY: int = 999

    CORS_ORIGINS: List[str] = ["http://localhost:3000"]
    LOG_LEVEL: str = "INFO"

    @property
    def GUEST_SESSION_MAX_AGE(self) -> int:
        return self.GUEST_SESSION_MAX_AGE_DAYS * 24 * 60 * 60

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
