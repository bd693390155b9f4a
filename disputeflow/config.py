from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "postgresql+asyncpg://disputeflow:disputeflow_dev@db:5432/disputeflow"

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"

    # Automated assessment
    ASSESSMENT_SETTLE_DELAY_SECONDS: int = 5
    CRITERION_TIMEOUT_SECONDS: float = 10.0
    ASSESSMENT_TIMEOUT_SECONDS: float = 60.0
    ASSESSMENT_HIGH_CONFIDENCE: int = 85
    ASSESSMENT_MEDIUM_CONFIDENCE: int = 70
    HIGH_VALUE_ORDER_THRESHOLD: float = 500.0
    CRITERION_WEIGHTS: dict[str, int] = {}
    STALE_ASSESSMENT_MINUTES: int = 30

    # Lifecycle
    HIGH_PRIORITY_ORDER_TOTAL: float = 1000.0
    RESPONSE_DEADLINE_DAYS: int = 7
    ESCALATION_DEADLINE_DAYS: int = 14
    AUTO_CLOSE_DAYS: int = 30
    TRANSITION_RETRY_ATTEMPTS: int = 3
    DEFAULT_CURRENCY: str = "USD"

    # Marketplace (orders, transactions, seller stats)
    MARKETPLACE_API_URL: str = "http://marketplace:8000/internal"
    MARKETPLACE_API_KEY: str = "mock_marketplace_key"

    # Payments
    PAYMENTS_API_URL: str = "http://payments:8000/v1"
    PAYMENTS_API_KEY: str = "mock_payments_key"

    # Escrow contract gateway
    CHAIN_GATEWAY_URL: str = "http://chain-gateway:8545/api"
    CHAIN_GATEWAY_KEY: str = "mock_chain_key"

    # User moderation
    MODERATION_API_URL: str = "http://moderation:8000/v1"
    MODERATION_API_KEY: str = "mock_moderation_key"

    # Notifications
    NOTIFICATIONS_API_URL: str = "http://notifications:8000/v1"
    NOTIFICATIONS_API_KEY: str = "mock_notifications_key"

    # App
    APP_ENV: str = "development"
    APP_URL: str = "http://localhost:8000"
    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
