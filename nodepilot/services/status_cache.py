"""
NodePilot - Node Status Cache
=============================

Mirrors the live status of every node from the remote status API.

The cache has exactly one writer, `refresh()`, which the scheduler calls
once per tick and on an independent fixed interval. Everything else
(API handlers, the scheduler's own observability) only reads
`snapshot()`, which never touches the network.

When the status API misbehaves the cache keeps serving the last-known-good
rows and records what went wrong in `ApiHealth`. After a configurable number
of consecutive failures a single degraded-service warning is logged with
`alert=True`, which the alert webhook handler forwards.
"""

import asyncio
import copy
import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

import aiohttp

from ..config import get_settings
from ..models.database_models import NodeStatusRow, utc_now


# =============================================================================
# LOGGER SETUP
# =============================================================================

logger = logging.getLogger(__name__)


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class NodeStatusRecord:
    """Last-known status of one node as reported by the status API."""
    node_id: str
    name: str = ""
    os: str = ""
    ip: str = ""
    last_boot_time: str = ""
    status: str = ""
    conn: int = 0
    pwr: float = 0.0
    last_updated: Optional[datetime] = None

    @classmethod
    def from_payload(cls, node_id: str, data: Dict[str, Any], stamp: datetime) -> "NodeStatusRecord":
        """Build a record from one entry of the status API payload."""
        return cls(
            node_id=str(node_id),
            name=_coerce_str(data.get('name')),
            os=_coerce_str(data.get('os')),
            ip=_coerce_str(data.get('ip')),
            last_boot_time=_coerce_str(data.get('lastbootuptime')),
            status=_coerce_str(data.get('status')),
            conn=_coerce_int(data.get('conn')),
            pwr=_coerce_float(data.get('pwr')),
            last_updated=stamp,
        )

    @classmethod
    def from_row(cls, row: NodeStatusRow) -> "NodeStatusRecord":
        return cls(
            node_id=row.node_id,
            name=row.name or "",
            os=row.os or "",
            ip=row.ip or "",
            last_boot_time=row.last_boot_time or "",
            status=row.status or "",
            conn=row.conn or 0,
            pwr=row.pwr or 0.0,
            last_updated=row.last_updated,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'node_id': self.node_id,
            'name': self.name,
            'os': self.os,
            'ip': self.ip,
            'last_boot_time': self.last_boot_time,
            'status': self.status,
            'conn': self.conn,
            'pwr': self.pwr,
            'last_updated': self.last_updated.isoformat() if self.last_updated else None,
        }


@dataclass
class ApiHealth:
    """
    Health of the remote status API as observed by the cache.

    Only `StatusCache.refresh()` mutates the instance it owns; readers
    always receive a copy.
    """
    is_working: bool = True
    last_error: str = ""
    last_successful: Optional[datetime] = None
    consecutive_failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'is_working': self.is_working,
            'last_error': self.last_error,
            'last_successful': self.last_successful.isoformat() if self.last_successful else None,
            'consecutive_failures': self.consecutive_failures,
        }


@dataclass
class CacheSnapshot:
    """Point-in-time view of the cache handed to readers."""
    nodes: Dict[str, NodeStatusRecord] = field(default_factory=dict)
    health: ApiHealth = field(default_factory=ApiHealth)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'nodes': {node_id: record.to_dict() for node_id, record in self.nodes.items()},
            'api_health': self.health.to_dict(),
        }


# =============================================================================
# PERSISTENCE
# =============================================================================

class NodeStatusRepository:
    """
    Stores node status rows in the `node_status` table.

    Rows are keyed by node id and only ever inserted or updated.
    """

    def __init__(self, database_manager=None):
        if database_manager is None:
            from ..database import db_manager
            database_manager = db_manager
        self.database_manager = database_manager

    def upsert_many(self, records: List[NodeStatusRecord]) -> int:
        with self.database_manager.get_session_context() as session:
            for record in records:
                row = session.get(NodeStatusRow, record.node_id)
                if row is None:
                    row = NodeStatusRow(node_id=record.node_id)
                    session.add(row)
                row.name = record.name
                row.os = record.os
                row.ip = record.ip
                row.last_boot_time = record.last_boot_time
                row.status = record.status
                row.conn = record.conn
                row.pwr = record.pwr
                row.last_updated = record.last_updated or utc_now()
            session.commit()
        return len(records)

    def load_all(self) -> List[NodeStatusRecord]:
        with self.database_manager.get_session_context() as session:
            rows = session.query(NodeStatusRow).order_by(NodeStatusRow.node_id).all()
            return [NodeStatusRecord.from_row(row) for row in rows]


# =============================================================================
# STATUS CACHE
# =============================================================================

class StatusCache:
    """
    Failure-tolerant mirror of the remote node status API.

    Example:
        cache = StatusCache("https://status.example.com/api/nodes")
        await cache.refresh()
        snapshot = cache.snapshot()
    """

    def __init__(
        self,
        source_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        degraded_threshold: Optional[int] = None,
        repository: Optional[NodeStatusRepository] = None
    ):
        settings = get_settings()
        self.source_url = source_url or settings.node_status_url
        self.timeout = aiohttp.ClientTimeout(
            total=timeout_seconds if timeout_seconds is not None else settings.node_status_timeout_seconds
        )
        self.degraded_threshold = (
            degraded_threshold if degraded_threshold is not None
            else settings.node_status_degraded_threshold
        )
        self.repository = repository

        self._nodes: Dict[str, NodeStatusRecord] = {}
        self._health = ApiHealth()
        self._lock = asyncio.Lock()

        self.total_polls = 0
        self.failed_polls = 0

    # -------------------------------------------------------------------------
    # Writer
    # -------------------------------------------------------------------------

    async def refresh(self) -> bool:
        """
        Poll the status API once and fold the result into the cache.

        Concurrent callers are serialized. Never raises.

        Returns:
            True if the poll succeeded, False otherwise
        """
        async with self._lock:
            self.total_polls += 1
            try:
                payload = await self._fetch_nodes()
                records = self._parse_payload(payload)
            except StatusSourceError as e:
                self._record_failure(str(e))
                return False
            except Exception as e:
                logger.exception("Unexpected error while refreshing node status")
                self._record_failure(f"Unexpected error: {e}")
                return False

            for record in records:
                self._nodes[record.node_id] = record

            if self.repository is not None and records:
                try:
                    self.repository.upsert_many(records)
                except Exception as e:
                    # The in-memory view is already current; the next poll rewrites the rows
                    logger.error(f"Failed to persist node status: {e}")

            self._record_success()
            logger.debug(f"Node status refreshed: {len(records)} nodes")
            return True

    async def _fetch_nodes(self) -> Any:
        """GET the status source and return the decoded JSON body."""
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(self.source_url) as response:
                    if 400 <= response.status < 500:
                        raise StatusSourceClientError(
                            f"HTTP {response.status} from status source (client error, not retried)"
                        )
                    if not 200 <= response.status < 300:
                        raise StatusSourceError(f"HTTP {response.status} from status source")
                    try:
                        return await response.json(content_type=None)
                    except ValueError as e:
                        raise StatusSourceError(f"Malformed JSON from status source: {e}") from e

        except aiohttp.ClientError as e:
            raise StatusSourceError(f"Network error: {e}") from e

        except asyncio.TimeoutError:
            raise StatusSourceError(
                f"Request timed out after {self.timeout.total}s"
            ) from None

    def _parse_payload(self, payload: Any) -> List[NodeStatusRecord]:
        """Turn the status API body into records, accepting a top-level "nodes" wrapper."""
        if isinstance(payload, dict) and isinstance(payload.get('nodes'), dict):
            payload = payload['nodes']

        if not isinstance(payload, dict):
            raise StatusSourceError(
                f"Malformed payload: expected an object keyed by node id, got {type(payload).__name__}"
            )

        stamp = utc_now()
        records = []
        for node_id, data in payload.items():
            if not isinstance(data, dict):
                logger.warning(f"Skipping malformed status entry for node {node_id!r}")
                continue
            records.append(NodeStatusRecord.from_payload(node_id, data, stamp))
        return records

    def _record_success(self) -> None:
        if not self._health.is_working:
            logger.info(
                f"Status source recovered after {self._health.consecutive_failures} failed poll(s)"
            )
        self._health.is_working = True
        self._health.last_error = ""
        self._health.consecutive_failures = 0
        self._health.last_successful = utc_now()

    def _record_failure(self, message: str) -> None:
        self.failed_polls += 1
        self._health.is_working = False
        self._health.last_error = message
        self._health.consecutive_failures += 1

        logger.warning(
            f"Node status poll failed ({self._health.consecutive_failures} consecutive): {message}"
        )

        if self._health.consecutive_failures == self.degraded_threshold:
            logger.warning(
                f"Status source degraded: {self._health.consecutive_failures} consecutive failures, "
                f"serving last-known-good data for {len(self._nodes)} node(s). Last error: {message}",
                extra={'alert': True, 'consecutive_failures': self._health.consecutive_failures}
            )

    # -------------------------------------------------------------------------
    # Readers
    # -------------------------------------------------------------------------

    @property
    def health(self) -> ApiHealth:
        return replace(self._health)

    def snapshot(self) -> CacheSnapshot:
        """Return all cached rows and a copy of ApiHealth. Never polls."""
        return CacheSnapshot(
            nodes={node_id: copy.copy(record) for node_id, record in self._nodes.items()},
            health=self.health,
        )

    def get_node(self, node_id: str) -> Optional[NodeStatusRecord]:
        record = self._nodes.get(node_id)
        return copy.copy(record) if record is not None else None

    def load_persisted(self) -> int:
        """Seed the in-memory rows from the database. ApiHealth is left untouched."""
        if self.repository is None:
            return 0

        records = self.repository.load_all()
        for record in records:
            self._nodes.setdefault(record.node_id, record)

        logger.info(f"Loaded {len(records)} persisted node status row(s)")
        return len(records)

    def get_usage_stats(self) -> Dict[str, Any]:
        return {
            'source_url': self.source_url,
            'cached_nodes': len(self._nodes),
            'total_polls': self.total_polls,
            'failed_polls': self.failed_polls,
            'degraded_threshold': self.degraded_threshold,
        }


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def _coerce_str(value: Any) -> str:
    return "" if value is None else str(value)


def _coerce_int(value: Any) -> int:
    # int() raises ValueError for NaN and OverflowError for infinities
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return 0


def _coerce_float(value: Any) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    return result if math.isfinite(result) else 0.0


# =============================================================================
# SERVICE FACTORY FUNCTION
# =============================================================================

_status_cache_instance = None

def get_status_cache() -> StatusCache:
    """Get singleton instance of the status cache, backed by the node_status table."""
    global _status_cache_instance

    if _status_cache_instance is None:
        _status_cache_instance = StatusCache(repository=NodeStatusRepository())

    return _status_cache_instance


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class StatusSourceError(Exception):
    """Base exception for status source poll failures."""
    pass


class StatusSourceClientError(StatusSourceError):
    """Raised when the status source answers with a 4xx; not retried."""
    pass
