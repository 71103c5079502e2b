# store_backend/config/settings.py

# Centralized application settings management using Pydantic Settings.

from pydantic_settings import BaseSettings, SettingsConfigDict


# Define your application settings class
class Settings(BaseSettings):
    # --- Environment Variables loaded by Pydantic Settings ---
    # These fields correspond to environment variables (e.g., in your .env file)
    MONGODB_URI: str = "mongodb://localhost:27017"
    DB_NAME: str = "store_backend"

    # --- JWT verification for operator endpoints ---
    SECRET_KEY: str = "StoreBackenD"  # Critical: Needs to be a strong, random string in production
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # --- Payment gateway (Lahza) ---
    LAHZA_BASE_URL: str = "https://api.lahza.io/transaction"
    LAHZA_CALLBACK_URL: str = "http://localhost:5173/"
    GATEWAY_TIMEOUT_SECONDS: float = 30.0

    # --- Trials / subscriptions ---
    TRIAL_PERIOD_DAYS: int = 14
    DEFAULT_RENEWAL_PERIOD_DAYS: int = 30  # Used by auto-renewal when the stored plan is gone
    EXPIRING_SOON_WINDOW_DAYS: int = 3

    # --- Pending payment ledger ---
    PENDING_PAYMENT_TTL_HOURS: int = 24
    PENDING_PAYMENT_MAX_CHECK_ATTEMPTS: int = 50
    PENDING_PAYMENT_MAX_ERRORS: int = 5
    PROCESSING_STALE_SECONDS: int = 300  # A 'processing' claim older than this is polled again

    # --- Background scheduler ---
    SCHEDULER_ENABLED: bool = True
    POLLING_FAST_INTERVAL_SECONDS: float = 10.0
    POLLING_SLOW_INTERVAL_SECONDS: float = 60.0
    POLLING_ITEM_DELAY_SECONDS: float = 0.5  # Pause between gateway calls inside one sweep
    EXPIRY_SWEEP_INTERVAL_SECONDS: float = 3600.0
    AUTO_RENEW_SWEEP_INTERVAL_SECONDS: float = 3600.0
    EXPIRING_SOON_REPORT_INTERVAL_SECONDS: float = 86400.0
    CLEANUP_INTERVAL_SECONDS: float = 3600.0

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # --- Configuration for Pydantic Settings ---
    model_config = SettingsConfigDict(
        env_file='.env',  # Instruct Pydantic Settings to load from .env file
        env_file_encoding='utf-8',
        extra='ignore',
    )


# Create a settings instance that loads values on import
settings = Settings()
