"""Retrying an action a bounded number of times."""

from __future__ import annotations

import logging
import time
from datetime import timedelta
from typing import Any, Callable, TypeVar

T = TypeVar("T")

_log = logging.getLogger(__name__)


class MaxRetriesExceeded(Exception):
    """Raised when an action still fails after the maximum number of retries."""

    def __init__(self, description: str, max_retries: int):
        super().__init__(f"'{description}' unsuccessful after {max_retries} retries")
        self.description = description
        self.max_retries = max_retries


def do_with_retry(
    action_description: str,
    max_retries: int,
    sleep_between_retries: float | timedelta,
    logger: Any,
    action: Callable[[int], T],
) -> T:
    """Call ``action(attempt)`` until it returns without raising.

    The action is tried once and then retried up to ``max_retries`` times, sleeping
    between attempts. Its return value is passed back; if every attempt raises,
    MaxRetriesExceeded is raised, chained to the last error.
    """
    if logger is None:
        logger = _log
    if isinstance(sleep_between_retries, timedelta):
        sleep_between_retries = sleep_between_retries.total_seconds()

    last_error: Exception | None = None
    for attempt in range(max_retries + 1):
        logger.info("%s", action_description)
        try:
            return action(attempt)
        except Exception as err:
            last_error = err
            if attempt < max_retries:
                logger.warning(
                    "%s returned an error: %s. Sleeping for %ss and will try again. Retry Count: %s.",
                    action_description,
                    err,
                    sleep_between_retries,
                    attempt,
                )
                time.sleep(sleep_between_retries)
            else:
                logger.warning(
                    "%s returned an error: %s. Retry Count: %s.",
                    action_description,
                    err,
                    attempt,
                )

    raise MaxRetriesExceeded(action_description, max_retries) from last_error