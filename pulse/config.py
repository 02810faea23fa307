"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """tg-pulse configuration. All values come from environment variables."""

    # Telegram
    telegram_bot_token: str = Field(default="")
    telegram_chat_id: str = Field(default="")
    allowed_user_ids: str = Field(default="")

    # Scheduler
    scheduler_interval_minutes: float = Field(default=5.0)
    scheduler_runs: int = Field(default=0)
    scheduler_retry_count: int = Field(default=2)
    scheduler_retry_delay_seconds: float = Field(default=5.0)
    scheduler_run_immediate: bool = Field(default=False)
    scheduler_log_path: Path = Field(default=Path("logs/api_check.log"))
    scheduler_sink_timeout_seconds: float = Field(default=10.0)

    # Control the scheduler through bot commands (long polling). When off the
    # process runs headless and the GetUpdates check is enabled.
    bot_commands_enabled: bool = Field(default=True)

    # Media used by the SendGIF / SendVoice / SendVideo checks
    uploads_dir: Path = Field(default=Path("uploads"))

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def get_allowed_user_ids(self) -> set[int]:
        """Parse ALLOWED_USER_IDS into a set of ints."""
        if not self.allowed_user_ids.strip():
            return set()
        return {int(uid.strip()) for uid in self.allowed_user_ids.split(",") if uid.strip()}

    @property
    def scheduler_configured(self) -> bool:
        """True when both the bot token and the target chat are set."""
        return bool(self.telegram_bot_token and self.telegram_chat_id.strip())


settings = Settings()
