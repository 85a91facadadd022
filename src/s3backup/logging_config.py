from __future__ import annotations

import logging
from typing import Any


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def with_context(logger: logging.Logger, **fields: Any) -> logging.LoggerAdapter:
    """Bind structured fields (bucket, key, ...) to every record; the host's formatter decides how to render them."""
    return logging.LoggerAdapter(logger, extra=fields)
