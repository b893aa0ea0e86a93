"""
Logging configuration for the event lifecycle engine.

Three loguru sinks: console, a rotating general log, and the promotion audit
log. Only records bound through `get_audit_logger` (they carry an event id
and the store generation) reach the audit log.
"""

import sys
from pathlib import Path
from typing import Any, Dict, Optional
from loguru import logger

from ..base.config import config


PROMOTION_FORMAT = ("{time:YYYY-MM-DD HH:mm:ss.SSS} | PROMOTION | gen {extra[generation]} | "
                    "{extra[event_id]} | {message}")


def _is_promotion(record: Dict[str, Any]) -> bool:
    extra = record["extra"]
    return bool(extra.get("audit")) and "event_id" in extra and "generation" in extra


def setup_logging(level: Optional[str] = None):
    """
    Configure logging for the event lifecycle engine using loguru.
    
    Args:
        level: Overrides the configured level for the console and general log
    """
    logger.remove()
    
    section = config.get_section("logging")
    log_level = (level or section.get("level") or config.log_level).upper()
    log_format = section.get("format", "{time:YYYY-MM-DD HH:mm:ss} | {level} | {name} | {message}")
    log_file = Path(section.get("file_path", "logs/event_lifecycle.log"))
    audit_file = Path(section.get("audit_log_path", "logs/promotions.log"))
    
    for path in (log_file, audit_file):
        path.parent.mkdir(parents=True, exist_ok=True)
    
    logger.add(
        sys.stdout,
        format=log_format,
        level=log_level,
        colorize=True,
        backtrace=True,
        diagnose=config.debug
    )
    
    logger.add(
        log_file,
        format=log_format,
        level=log_level,
        rotation=section.get("max_file_size", "50MB"),
        retention=section.get("backup_count", 5),
        backtrace=True,
        diagnose=config.debug,
        encoding="utf-8"
    )
    
    # Promotions are kept regardless of the console level
    logger.add(
        audit_file,
        format=PROMOTION_FORMAT,
        level="INFO",
        rotation="1 day",
        retention="30 days",
        filter=_is_promotion,
        encoding="utf-8"
    )
    
    logger.info(f"Logging initialized at {log_level} (promotions -> {audit_file})")


def get_audit_logger(event_id: str, generation: int):
    """Get a logger whose records land in the promotion audit log."""
    return logger.bind(audit=True, event_id=event_id, generation=generation)
