from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from flashdeck.domain.constants import (
    DEFAULT_DESIRED_RETENTION,
    DEFAULT_EASY_BONUS,
    DEFAULT_HARD_INTERVAL_FACTOR,
    DEFAULT_LEARN_AHEAD_MINUTES,
    DEFAULT_LEARNING_STEPS,
    DEFAULT_MAX_REVIEWS_PER_DAY,
    DEFAULT_MAXIMUM_INTERVAL,
    DEFAULT_NEW_CARDS_PER_DAY,
    DEFAULT_PARAMETERS,
    DEFAULT_RELEARNING_STEPS,
    DEFAULT_SERVER_HOST,
    DEFAULT_SERVER_PORT,
    FUZZY_MATCH_THRESHOLD,
    PARAMETER_COUNT,
    REFILL_BATCH_SIZE,
    REORDER_EVERY,
    REQUEUE_BUFFER_MAX,
    REQUEUE_BUFFER_MIN,
    REQUEUE_MIN_SECONDS,
)

CONFIG_DIR = Path.home() / ".config/flashdeck"
CONFIG_FILE = CONFIG_DIR / "config.toml"


class AppConfig(BaseSettings):
    """
    Configuration model for flashdeck.
    Supports loading from:
    1. Config file (~/.config/flashdeck/config.toml)
    2. Environment variables (FLASHDECK_*)
    3. Manual overrides (CLI)
    """

    model_config = SettingsConfigDict(
        env_prefix="FLASHDECK_",
        toml_file=CONFIG_FILE,
        extra="ignore",
    )

    # Paths
    library_root: Path | None = None
    database_path: Path = Field(default_factory=lambda: CONFIG_DIR / "flashdeck.db")

    # Memory model
    desired_retention: float = DEFAULT_DESIRED_RETENTION
    maximum_interval: int = Field(default=DEFAULT_MAXIMUM_INTERVAL, ge=1)
    learning_steps: list[int] = Field(default_factory=lambda: list(DEFAULT_LEARNING_STEPS))
    relearning_steps: list[int] = Field(default_factory=lambda: list(DEFAULT_RELEARNING_STEPS))
    easy_bonus: float = Field(default=DEFAULT_EASY_BONUS, gt=1.0)
    hard_interval_factor: float = Field(default=DEFAULT_HARD_INTERVAL_FACTOR, gt=0.0, lt=1.0)
    parameters: list[float] = Field(default_factory=lambda: list(DEFAULT_PARAMETERS))

    # Study sessions
    new_cards_per_day: int = Field(default=DEFAULT_NEW_CARDS_PER_DAY, ge=0)
    max_reviews_per_day: int = Field(default=DEFAULT_MAX_REVIEWS_PER_DAY, ge=0)
    learn_ahead_minutes: int = Field(default=DEFAULT_LEARN_AHEAD_MINUTES, ge=0)
    requeue_min_seconds: int = Field(default=REQUEUE_MIN_SECONDS, ge=0)
    reorder_every: int = Field(default=REORDER_EVERY, ge=1)
    refill_batch_size: int = Field(default=REFILL_BATCH_SIZE, ge=1)
    requeue_buffer_min: int = Field(default=REQUEUE_BUFFER_MIN, ge=1)
    requeue_buffer_max: int = Field(default=REQUEUE_BUFFER_MAX, ge=1)

    # Sync
    fuzzy_match_threshold: float = Field(default=FUZZY_MATCH_THRESHOLD, ge=0.0, le=1.0)

    # Server
    host: str = DEFAULT_SERVER_HOST
    port: int = DEFAULT_SERVER_PORT

    verbose: int = 1

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        # Earlier sources win: overrides, then env, then the TOML file.
        if CONFIG_FILE.exists():
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=CONFIG_FILE),
            )
        return (init_settings, env_settings)

    @field_validator("desired_retention")
    @classmethod
    def check_retention(cls, v: float) -> float:
        if not 0 < v < 1:
            raise ValueError("desired_retention must be strictly between 0 and 1")
        return v

    @field_validator("parameters")
    @classmethod
    def check_parameters(cls, v: list[float]) -> list[float]:
        if len(v) != PARAMETER_COUNT:
            raise ValueError(f"parameters must hold exactly {PARAMETER_COUNT} weights")
        return v

    @field_validator("learning_steps", "relearning_steps")
    @classmethod
    def check_steps(cls, v: list[int]) -> list[int]:
        if any(step <= 0 for step in v):
            raise ValueError("step intervals must be positive minutes")
        return v

    @field_validator("library_root", "database_path", mode="before")
    @classmethod
    def resolve_path(cls, v: Any) -> Path | None:
        if v is None:
            return None
        if str(v) == ":memory:":
            return Path(":memory:")
        return Path(v).expanduser().resolve()


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/flashdeck/config.toml (if exists)
    3. Environment variables (FLASHDECK_*)
    4. cli_overrides (passed from Typer)
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    config = AppConfig(**overrides)

    if config.library_root is None:
        config.library_root = Path.cwd()

    return config
