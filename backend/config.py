from pydantic_settings import BaseSettings
from pathlib import Path


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"  # development | test | staging | production
    APP_NAME: str = "GymNet"
    SECRET_KEY: str = "change-me-in-production"
    DATABASE_URL: str = "sqlite:///data/gymnet.db"
    DATA_DIR: Path = Path("data")
    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_HOURS: int = 72
    ADMIN_JWT_EXPIRY_HOURS: int = 12
    SECURITY_HEADERS_ENABLED: bool = True

    SMTP_HOST: str | None = None
    SMTP_PORT: int | None = None
    SMTP_USER: str | None = None
    SMTP_PASS: str | None = None
    SMTP_SECURE: bool = False
    SMTP_FROM: str | None = None
    SMTP_TIMEOUT_SECONDS: int = 20

    MEAL_REMINDER_OFFSET_MINUTES: float = 30
    EXERCISE_REMINDER_OFFSET_MINUTES: float = 45
    REMINDER_LOOKAHEAD_DAYS: float = 1
    LOCAL_TIMEZONE_OFFSET_MINUTES: float = 420  # UTC+7
    NIGHTLY_REMINDER_CRON: str = "0 21 * * *"
    REMINDER_TIMEZONE: str = "Asia/Ho_Chi_Minh"
    REMINDER_SCHEDULER_ENABLED: bool = True

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def is_production_like(self) -> bool:
        return (self.ENVIRONMENT or "").strip().lower() in {"production", "prod", "staging"}

    @property
    def smtp_configured(self) -> bool:
        return bool(self.SMTP_HOST and self.SMTP_PORT and self.SMTP_USER and self.SMTP_PASS)

    def validate_security_configuration(self) -> None:
        if not self.is_production_like:
            return

        errors: list[str] = []
        if self.SECRET_KEY == "change-me-in-production":
            errors.append("SECRET_KEY must be changed from the default value")
        if len((self.SECRET_KEY or "").strip()) < 16:
            errors.append("SECRET_KEY must be at least 16 characters")
        if not self.smtp_configured:
            errors.append("SMTP_HOST, SMTP_PORT, SMTP_USER and SMTP_PASS are required for reminder emails")
        if errors:
            joined = "; ".join(errors)
            raise RuntimeError(f"Insecure production configuration: {joined}")


settings = Settings()
settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
