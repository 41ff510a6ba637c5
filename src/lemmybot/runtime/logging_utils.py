import logging
import os
import sys
from .config import BotConfig


_RESET = "\033[0m"
_BOLD = "\033[1m"
_CYAN = "\033[36m"
_MAGENTA = "\033[35m"
_GREEN = "\033[32m"
_YELLOW = "\033[33m"
_RED = "\033[31m"
_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[31m",
}


def _stream_supports_color() -> bool:
    if os.getenv("NO_COLOR"):
        return False
    force = os.getenv("FORCE_COLOR", "").strip().lower()
    if force in {"1", "true", "yes"}:
        return True
    return bool(sys.stderr.isatty())


class ColorFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        level_name = record.levelname.upper()
        color = _COLORS.get(level_name, "")
        if not color:
            return message

        # Connection and login lifecycle lines stand out from item traffic.
        if "Connected to Lemmy instance" in message:
            painted = f"{_BOLD}{_GREEN}[CONNECTED] {message}{_RESET}"
        elif "Logged in" in message:
            painted = f"{_BOLD}{_GREEN}[LOGIN] {message}{_RESET}"
        elif "Authentication failed" in message:
            painted = f"{_BOLD}{_RED}[AUTH FAILED] {message}{_RESET}"
        elif "Reconnect scheduled" in message:
            painted = f"{_BOLD}{_YELLOW}[RECONNECT] {message}{_RESET}"
        elif "Action " in message:
            painted = f"{_BOLD}{_MAGENTA}[ACTION] {message}{_RESET}"
        elif "Dispatched category=" in message:
            painted = f"{_BOLD}{_CYAN}[DISPATCH] {message}{_RESET}"
        else:
            painted = f"{color}{message}{_RESET}"
        return painted


def setup_logging(cfg: BotConfig) -> logging.Logger:
    level = getattr(logging, cfg.log_level, logging.INFO)
    logger = logging.getLogger("lemmybot.runtime")
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(
        fmt="%(asctime)sZ %(levelname)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    stream_handler = logging.StreamHandler()
    if _stream_supports_color():
        stream_handler.setFormatter(
            ColorFormatter(
                fmt="%(asctime)sZ %(levelname)s %(message)s",
                datefmt="%Y-%m-%dT%H:%M:%S",
            )
        )
    else:
        stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if cfg.log_path:
        cfg.log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(cfg.log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
