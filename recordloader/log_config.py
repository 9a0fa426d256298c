"""Logging setup for the record loader, built on loguru."""

import json
import sys
from typing import Any, Dict

from loguru import logger
from pydantic import BaseModel


class LogConfig(BaseModel):
    level: str = "INFO"
    format: str = "console"  # console or json


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}:{function}:{line}</cyan> - <level>{message}</level>"
)


def _json_formatter(record: Dict[str, Any]) -> str:
    payload = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "module": record["name"],
        "function": record["function"],
        "line": record["line"],
    }
    payload.update(record["extra"])
    # loguru treats the returned string as a format template
    record["extra"]["_json"] = json.dumps(payload, ensure_ascii=False, default=str)
    return "{extra[_json]}\n"


def configure_logging(config: LogConfig) -> None:
    """Replace loguru's default sink with one matching ``config``."""
    logger.remove()
    if config.format == "json":
        logger.add(sys.stderr, level=config.level.upper(), format=_json_formatter)
    else:
        logger.add(sys.stderr, level=config.level.upper(), format=CONSOLE_FORMAT)
