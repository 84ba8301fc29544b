from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Local cart storage
    DATABASE_URL: str = "sqlite+aiosqlite:///./borrow_carts.db"

    # Library API connection
    LIBRARY_API_BASE_URL: str = "http://localhost:5000/api"
    LIBRARY_API_TIMEOUT_SECONDS: float = 30.0

    # Session
    SESSION_SECRET_KEY: str = "change-me"
    SESSION_MAX_AGE_SECONDS: int = 3600 * 24 * 7

    # Order processing SLA windows
    PREMIUM_SLA_HOURS: int = 24
    BASIC_SLA_HOURS: int = 96

    # Delivery fee rules
    DELIVERY_FEE: int = 50
    FREE_DELIVERY_THRESHOLD: int = 500

    # Days after delivery during which an exchange may be requested
    EXCHANGE_WINDOW_DAYS: int = 7

    SERVICE_NAME: str = "E-Library Borrow Service"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
