"""
Logging configuration.

The packaged `config/logging.yaml` is the base; the level comes from settings
(`app.log_level`, `COUPONRADAR_LOG_LEVEL`) unless the caller passes one explicitly
(the CLI's `--log-level`). Matching passes and timer ticks run on background threads,
so the format carries the thread name.
"""

from __future__ import annotations

import copy
import logging.config

from couponradar.config.settings import get_logging_config, get_settings


def configure_logging(level: str | None = None) -> None:
    """Apply the packaged logging config at `level` (default: from settings)."""
    config = copy.deepcopy(get_logging_config())
    effective = (level or get_settings().app.log_level).upper()

    config.setdefault("root", {})["level"] = effective
    config.setdefault("loggers", {}).setdefault("couponradar", {})["level"] = effective
    for handler in config.get("handlers", {}).values():
        if isinstance(handler, dict):
            handler["level"] = effective

    logging.config.dictConfig(config)
