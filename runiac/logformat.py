"""Log formatting and field-carrying logger adapters."""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from typing import Any

RED = 31
YELLOW = 33
BLUE = 36
GRAY = 37
GREEN = 32

_STEP_ID_FIELDS = ("track", "step", "regionDeployType", "region")


def _level_color(levelno: int) -> int:
    if levelno <= logging.DEBUG:
        return GRAY
    if levelno == logging.WARNING:
        return YELLOW
    if levelno >= logging.ERROR:
        return RED
    return GREEN


class RuniacFormatter(logging.Formatter):
    """Compact human-readable formatter that understands step fields."""

    def __init__(self, disable_colors: bool = False):
        super().__init__()
        self.disable_colors = disable_colors

    def _is_colored(self) -> bool:
        return sys.platform != "win32" and not self.disable_colors

    def format(self, record: logging.LogRecord) -> str:
        fields = getattr(record, "fields", None) or {}
        colored = self._is_colored()
        parts = []

        if colored:
            parts.append(f"\x1b[{_level_color(record.levelno)}m")
        else:
            parts.append(f"[{record.levelname.upper()}] ")

        if "action" in fields:
            step_id = "/".join(str(fields[key]) for key in _STEP_ID_FIELDS if key in fields)
            parts.append(f"({fields['action']} {step_id})   ")

        parts.append(record.getMessage())

        if "error" in fields:
            parts.append(f"   ({fields['error']})")

        if colored:
            parts.append("\x1b[0m")

        return "".join(parts)


class FieldsAdapter(logging.LoggerAdapter):
    """Logger adapter that attaches a dictionary of fields to each record."""

    def __init__(self, logger: logging.Logger, extra: dict[str, Any] | None = None):
        super().__init__(logger, dict(extra or {}))

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        fields = {**self.extra, **extra.pop("fields", {})}
        extra["fields"] = fields
        kwargs["extra"] = extra
        return msg, kwargs

    def with_fields(self, **kwargs: Any) -> "FieldsAdapter":
        """Return a new adapter carrying these fields on top of the current ones."""
        return FieldsAdapter(self.logger, {**self.extra, **kwargs})

    def with_error(self, err: BaseException | str) -> "FieldsAdapter":
        """Return a new adapter carrying ``err`` as the error field."""
        return self.with_fields(error=err)