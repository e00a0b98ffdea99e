from dotenv import load_dotenv
from pydantic import BaseModel
import os

# Carga el .env automáticamente
load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "development")
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./budget_tracker.db")
    sql_echo: bool = _env_bool("SQL_ECHO")

    razorpay_key_id: str = os.getenv("RAZORPAY_KEY_ID", "")
    razorpay_key_secret: str = os.getenv("RAZORPAY_KEY_SECRET", "")
    razorpay_webhook_secret: str = os.getenv("RAZORPAY_WEBHOOK_SECRET", "")
    razorpay_base_url: str = os.getenv("RAZORPAY_BASE_URL", "https://api.razorpay.com/v1")
    gateway_timeout_seconds: float = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))
    reconcile_payments: bool = _env_bool("RECONCILE_PAYMENTS")

    default_monthly_budget: float = float(os.getenv("DEFAULT_MONTHLY_BUDGET", "10000"))
    default_currency: str = os.getenv("DEFAULT_CURRENCY", "INR")

    allowed_origins: str = os.getenv("ALLOWED_ORIGINS", "*")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_json: bool = _env_bool("LOG_JSON")

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


# Instancia global de settings
settings = Settings()
