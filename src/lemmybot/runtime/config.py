from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union
import os

from ..lemmy_client import LemmyCredentials, normalize_instance
from .federation import (
    ConfigError,
    FederationOptions,
    InstanceFederationOptions,
    InstanceList,
)


DEFAULT_INSTANCE = "localhost:8536"
DEFAULT_SECONDS_BETWEEN_POLLS = 10
DEFAULT_MINUTES_BEFORE_RETRY_CONNECTION = 5


@dataclass
class BotConfig:
    instance: str
    credentials: Optional[LemmyCredentials] = None
    db_path: Optional[Path] = None
    seconds_between_polls: int = DEFAULT_SECONDS_BETWEEN_POLLS
    minutes_before_retry_connection: float = DEFAULT_MINUTES_BEFORE_RETRY_CONNECTION
    minutes_until_reprocess: Optional[float] = None
    federation: Union[str, FederationOptions] = "local"
    log_level: str = "INFO"
    log_path: Optional[Path] = None
    fetch_limit: int = 10

    def __post_init__(self) -> None:
        self.instance = normalize_instance(self.instance)
        if not self.instance:
            raise ConfigError("instance must be provided")
        if self.seconds_between_polls <= 0:
            raise ConfigError("seconds_between_polls must be positive")
        if self.minutes_before_retry_connection <= 0:
            raise ConfigError("minutes_before_retry_connection must be positive")


def _parse_csv_env(env_key: str) -> List[str]:
    value = os.getenv(env_key, "")
    if not value.strip():
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _optional_float_env(env_key: str) -> Optional[float]:
    value = os.getenv(env_key, "").strip()
    if not value:
        return None
    return float(value)


def parse_instance_entry(entry: str) -> Union[str, InstanceFederationOptions]:
    """Parse `instance` or `community+community@instance`."""
    text = entry.strip()
    if "@" not in text:
        return normalize_instance(text)
    communities_part, instance = text.rsplit("@", 1)
    communities = [c.strip() for c in communities_part.split("+") if c.strip()]
    if not communities:
        return normalize_instance(instance)
    return InstanceFederationOptions(instance=normalize_instance(instance), communities=communities)


def parse_federation_env(mode: str, entries: List[str]) -> Union[str, FederationOptions]:
    mode = mode.strip().lower()
    if mode in {"local", "all"}:
        return mode
    instances: InstanceList = [parse_instance_entry(entry) for entry in entries]
    if mode == "allow":
        return FederationOptions(allow_list=instances)
    if mode == "block":
        return FederationOptions(block_list=instances)
    raise ConfigError(f"Unknown federation mode {mode!r}; expected local, all, allow or block")


def load_config() -> BotConfig:
    instance = os.getenv("LEMMY_INSTANCE", DEFAULT_INSTANCE)
    credentials = LemmyCredentials.load()

    db_path_str = os.getenv("LEMMY_DB_PATH", "").strip()
    db_path = Path(db_path_str) if db_path_str else None

    seconds_between_polls = int(os.getenv("LEMMY_SECONDS_BETWEEN_POLLS", str(DEFAULT_SECONDS_BETWEEN_POLLS)))
    minutes_before_retry_connection = float(
        os.getenv("LEMMY_MINUTES_BEFORE_RETRY_CONNECTION", str(DEFAULT_MINUTES_BEFORE_RETRY_CONNECTION))
    )
    minutes_until_reprocess = _optional_float_env("LEMMY_MINUTES_UNTIL_REPROCESS")
    fetch_limit = int(os.getenv("LEMMY_FETCH_LIMIT", "10"))

    federation = parse_federation_env(
        os.getenv("LEMMY_FEDERATION", "local"),
        _parse_csv_env("LEMMY_FEDERATION_LIST"),
    )

    log_level = os.getenv("LEMMY_LOG_LEVEL", "INFO").strip().upper()
    log_path_str = os.getenv("LEMMY_LOG_PATH", "").strip()
    log_path = Path(log_path_str) if log_path_str else None

    return BotConfig(
        instance=instance,
        credentials=credentials,
        db_path=db_path,
        seconds_between_polls=seconds_between_polls,
        minutes_before_retry_connection=minutes_before_retry_connection,
        minutes_until_reprocess=minutes_until_reprocess,
        federation=federation,
        log_level=log_level,
        log_path=log_path,
        fetch_limit=fetch_limit,
    )
