import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from fastapi import Request


logger = logging.getLogger("msgboard")


def setup_logging(level: str = "INFO") -> logging.Logger:
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(name)s: %(message)s", "%Y/%m/%d %H:%M:%S")
        )
        logger.addHandler(handler)
    for h in logger.handlers:
        h.setLevel(level)
    return logger


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def remote_addr(request: Request) -> str:
    if request.client is None:
        return ""
    return f"{request.client.host}:{request.client.port}"


def log_json(level: int, fields: dict[str, Any]) -> None:
    log = {"ts": iso_now(), "level": logging.getLevelName(level).lower()}
    log.update(fields)
    logger.log(level, json.dumps(log))
