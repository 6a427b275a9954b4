from dataclasses import dataclass
import os

from dotenv import load_dotenv


load_dotenv()


@dataclass(frozen=True)
class Settings:
    app_name: str
    database_url: str
    log_level: str
    validation_progress_interval: int
    default_batch_size: int
    schedule_hour_utc: int
    schedule_minute_utc: int


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("APP_NAME", "pipeline-orchestrator"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./pipeline.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        validation_progress_interval=int(os.getenv("VALIDATION_PROGRESS_INTERVAL", "100")),
        default_batch_size=int(os.getenv("DEFAULT_BATCH_SIZE", "500")),
        schedule_hour_utc=int(os.getenv("SCHEDULE_HOUR_UTC", "2")),
        schedule_minute_utc=int(os.getenv("SCHEDULE_MINUTE_UTC", "0")),
    )
