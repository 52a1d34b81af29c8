from typing import List, Optional
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    APP_NAME: str = "Order Sync Service"
    VERSION: str = '1.0.0'
    DEBUG: bool = False
    SECRET_KEY: str
    ALGORITHM: str = 'HS256'
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_RECYCLE: int = 3600
    ECHO_SQL: bool = False
    AUTO_CREATE_TABLES: bool = True
    REDIS_URL: Optional[str] = None
    RATE_LIMIT_PER_MINUTE: int = 60
    REQUEST_TIMEOUT_SECONDS: int = 60
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000", "http://127.0.0.1:3000"]

    # MercadoLivre application credentials and secret encryption key
    ML_CLIENT_ID: str
    ML_CLIENT_SECRET: str
    APP_ENCRYPTION_KEY: str
    ML_API_BASE_URL: str = "https://api.mercadolibre.com"
    ML_AUTH_BASE_URL: str = "https://auth.mercadolivre.com.br"
    ML_SEARCH_MAX_LIMIT: int = 200
    ML_DEFAULT_LIMIT: int = 50
    ML_SHIPMENT_ENRICH_MAX: int = 50

    HTTP_TIMEOUT_SECONDS: float = 30.0
    HTTP_RETRY_ATTEMPTS: int = 3
    HTTP_RETRY_MIN_WAIT: int = 4
    HTTP_RETRY_MAX_WAIT: int = 10

    TOKEN_REFRESH_MARGIN_SECONDS: int = 300
    AGGREGATOR_CACHE_TTL_SECONDS: float = 300.0
    AGGREGATOR_DEBOUNCE_SECONDS: float = 0.3
    AGGREGATOR_PAGE_SIZE: int = 100

    ENABLE_BACKGROUND_SYNC: bool = True
    INCREMENTAL_SYNC_MINUTES: int = 30

    class Config:
        env_file = '.env'
        case_sensitive = True
        extra = 'ignore'


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
