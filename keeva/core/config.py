from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # --- Service ---
    PROJECT_NAME: str = "Keeva_Orders"
    LOG_LEVEL: str = "INFO"
    TIMEZONE: str = "Asia/Kolkata"

    # --- Storage ---
    DATABASE_URL: str = "sqlite:///./keeva.db"
    DB_CONNECT_RETRIES: int = 10
    DB_CONNECT_WAIT_SECONDS: int = 3

    # --- Realtime ---
    # Empty means in-process delivery only
    REDIS_URL: str | None = None
    EVENTS_CHANNEL: str = "keeva:orders:events"
    REDIS_SOCKET_TIMEOUT: float = 2.0

    # --- Auth ---
    JWT_SECRET: str = "devsecret"
    JWT_ALGORITHM: str = "HS256"

    # --- Payment gateway ---
    RAZORPAY_KEY_ID: str | None = None
    RAZORPAY_KEY_SECRET: str | None = None
    PAYMENT_CURRENCY: str = "INR"
    GATEWAY_TIMEOUT_SECONDS: float = 10.0

    # --- Pricing ---
    MAX_DELIVERY_FEE: float = 100.0
    MAX_TAX_RATE: float = 0.28
    # code -> {"type": "flat"|"percent", "value": n, "min_subtotal": n, "max_discount": n}
    COUPONS: dict[str, dict] = {
        "SAVE30NOW": {"type": "flat", "value": 30, "min_subtotal": 99},
    }

    # --- Orders ---
    ORDER_ID_ATTEMPTS: int = 3
    STATUS_UPDATE_RETRIES: int = 3

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

settings = Settings()
