"""
Observability & Audit Layer

RESPONSIBILITY: Logging setup, append-only audit trail per layer
ALLOWED INPUTS: Audit entries from any layer
OUTPUTS: JSON log records, AuditLogEntry lists

WHAT THIS LAYER MUST NOT DO:
============================
- Modify system behavior
- Filter or interpret events (only record them)
- Make decisions based on logged data

Usage::

    from chronicle.observability import get_logger, SessionAdapter

    logger = SessionAdapter(get_logger("chronicle.engine"), session_id="chat-1")
    logger.info("batch applied", extra={"message_id": 4})
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, MutableMapping, Optional, Tuple
import json
import logging
import sys


ROOT_LOGGER = "chronicle"

_EXTRA_KEYS = ("session_id", "message_id", "swipe_id", "layer", "action", "count", "version")


# =============================================================================
# JSON LOGGING
# =============================================================================

class JSONFormatter(logging.Formatter):
    """Emits each record as a single-line JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class SessionAdapter(logging.LoggerAdapter):
    """Logger adapter that injects ``session_id`` into every record."""

    def __init__(self, logger: logging.Logger, session_id: str):
        super().__init__(logger, {"session_id": session_id})

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> Tuple[str, MutableMapping[str, Any]]:
        extra = kwargs.setdefault("extra", {})
        extra.update(self.extra)
        return msg, kwargs


_CONFIGURED = False


def setup_logging(level: str = "INFO", json_logs: bool = True, stream=None) -> None:
    """
    Configure the ``chronicle`` logger namespace.

    Only the first call has effect. Library use without calling this
    leaves records to propagate to the host application's handlers.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return
    _CONFIGURED = True

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    handler = logging.StreamHandler(stream or sys.stderr)
    if json_logs:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Child logger under the ``chronicle`` namespace."""
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


# =============================================================================
# AUDIT TRAIL
# =============================================================================

class AuditEventType(Enum):
    EVENTS_APPENDED = "events_appended"
    EVENTS_DELETED = "events_deleted"
    SWIPES_REINDEXED = "swipes_reindexed"
    SNAPSHOT_SAVED = "snapshot_saved"
    SNAPSHOTS_INVALIDATED = "snapshots_invalidated"
    MILESTONES_RECOMPUTED = "milestones_recomputed"
    MIGRATION_APPLIED = "migration_applied"
    BATCH_INGESTED = "batch_ingested"
    BATCH_REJECTED = "batch_rejected"
    INGESTION_CANCELLED = "ingestion_cancelled"
    STORE_LOADED = "store_loaded"
    STORE_SAVED = "store_saved"


@dataclass(frozen=True)
class AuditLogEntry:
    event_type: AuditEventType
    layer: str
    timestamp: datetime
    details: Tuple[Tuple[str, str], ...] = ()

    @staticmethod
    def create(event_type: AuditEventType, layer: str, **details) -> AuditLogEntry:
        return AuditLogEntry(
            event_type=event_type,
            layer=layer,
            timestamp=datetime.now(timezone.utc),
            details=tuple(sorted((key, str(value)) for key, value in details.items())),
        )

    def detail(self, key: str) -> Optional[str]:
        for name, value in self.details:
            if name == key:
                return value
        return None


class LogCollector:
    """
    Per-layer audit collector.

    Collectors are append-only - no modification of collected data.
    Every collected entry is also emitted on the layer's logger at DEBUG.
    """

    def __init__(self, layer_name: str):
        self._layer_name = layer_name
        self._entries: List[AuditLogEntry] = []
        self._logger = get_logger(f"audit.{layer_name}")

    def record(self, event_type: AuditEventType, **details) -> AuditLogEntry:
        entry = AuditLogEntry.create(event_type, self._layer_name, **details)
        self._entries.append(entry)
        self._logger.debug(
            "%s %s", event_type.value, dict(entry.details),
            extra={"layer": self._layer_name, "action": event_type.value},
        )
        return entry

    def get_entries(self, event_type: Optional[AuditEventType] = None) -> List[AuditLogEntry]:
        entries = self._entries
        if event_type:
            entries = [e for e in entries if e.event_type == event_type]
        return list(entries)

    @property
    def layer_name(self) -> str:
        return self._layer_name

    @property
    def entry_count(self) -> int:
        return len(self._entries)


@dataclass
class ObservabilityConfig:
    log_level: str = "INFO"
    json_logs: bool = True


class ObservabilityEngine:
    """One collector per layer, created on first use."""

    def __init__(self, config: Optional[ObservabilityConfig] = None):
        self._config = config or ObservabilityConfig()
        self._collectors: Dict[str, LogCollector] = {}

    def configure_logging(self) -> None:
        setup_logging(level=self._config.log_level, json_logs=self._config.json_logs)

    def collector(self, layer_name: str) -> LogCollector:
        if layer_name not in self._collectors:
            self._collectors[layer_name] = LogCollector(layer_name)
        return self._collectors[layer_name]

    def all_entries(self) -> List[AuditLogEntry]:
        entries: List[AuditLogEntry] = []
        for collector in self._collectors.values():
            entries.extend(collector.get_entries())
        return sorted(entries, key=lambda e: e.timestamp)
