from __future__ import annotations

import os
import sys
import textwrap
from typing import Any, Dict, List, Sequence, Tuple

from .config import BotConfig
from .federation import FederationOptions


def supports_color() -> bool:
    return sys.stdout.isatty() and not bool(os.getenv("NO_COLOR"))


def _ui_palette() -> Dict[str, str]:
    if not supports_color():
        return {"reset": "", "bold": "", "cyan": "", "green": "", "yellow": "", "magenta": ""}
    return {
        "reset": "\033[0m",
        "bold": "\033[1m",
        "cyan": "\033[1;36m",
        "green": "\033[1;32m",
        "yellow": "\033[1;33m",
        "magenta": "\033[1;35m",
    }


def _ui_paint(text: str, tone: str = "", bold: bool = False) -> str:
    palette = _ui_palette()
    reset = palette["reset"]
    if not reset:
        return text
    chunks: List[str] = []
    if bold:
        chunks.append(palette["bold"])
    if tone:
        chunks.append(palette.get(tone, ""))
    chunks.append(text)
    chunks.append(reset)
    return "".join(chunks)


def _ui_wrap_lines(value: Any, width: int) -> List[str]:
    text = str(value if value is not None else "").strip()
    if not text:
        return [""]
    return textwrap.wrap(text, width=max(8, width), break_long_words=True, break_on_hyphens=False) or [""]


def _ui_print_panel(
    title: str,
    rows: List[Tuple[str, Any]],
    tone: str = "cyan",
    width: int = 74,
) -> None:
    inner = max(30, width - 4)
    border = "+" + ("-" * (inner + 2)) + "+"
    print("")
    print(_ui_paint(border, tone=tone, bold=True))
    print(_ui_paint(f"| {title.strip() or 'INFO':<{inner}} |", tone=tone, bold=True))
    print(_ui_paint(border, tone=tone))
    for label, value in rows:
        value_lines = _ui_wrap_lines(value, width=(inner - (len(label) + 2) if label else inner))
        for idx, line in enumerate(value_lines):
            if label:
                prefix = f"{label}: " if idx == 0 else (" " * (len(label) + 2))
            else:
                prefix = ""
            content = f"{prefix}{line}"
            print(f"| {content:<{inner}} |")
    print(_ui_paint(border, tone=tone))
    print("")


def describe_federation(federation: Any) -> str:
    if isinstance(federation, FederationOptions):
        if federation.allow_list:
            return f"allow {len(federation.allow_list)} instance(s)"
        return f"block {len(federation.block_list)} instance(s)"
    return str(federation)


def print_runtime_banner(cfg: BotConfig, categories: Sequence[str]) -> None:
    login = cfg.credentials.username if cfg.credentials else "(read-only)"
    _ui_print_panel(
        title="LEMMY BOT",
        rows=[
            ("instance", cfg.instance),
            ("login", login),
            ("federation", describe_federation(cfg.federation)),
            ("polling", f"every {cfg.seconds_between_polls}s | retry/{cfg.minutes_before_retry_connection}m"),
            ("handlers", ", ".join(categories) or "(none)"),
        ],
        tone="magenta",
    )
