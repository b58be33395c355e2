from pydantic_settings import BaseSettings

class Settings(BaseSettings):

    DATABASE_URL: str = "sqlite+aiosqlite:///./momentcart.db"
    ENV: str = "dev"                # "dev" / "staging" / "prod"
    SERVICE_NAME: str = "momentcart"
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    CHECKOUT_SESSION_TTL_MINUTES: int = 30
    RESERVATION_TTL_MINUTES: int = 15

    ENABLE_REAPER: bool = True
    REAPER_INTERVAL_SECONDS: float = 30.0
    REAPER_BATCH_SIZE: int = 100

    DB_ECHO: bool = False

    class Config:
        env_file = ".env"
        extra="ignore"

config_settings = Settings()
