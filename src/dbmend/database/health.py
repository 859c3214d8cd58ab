"""
Database health checking for dbmend.

Confirms the connection answers queries before any repair is attempted.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Any
from enum import Enum

from .connection import Database


logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Health check status levels."""

    HEALTHY = "healthy"
    CRITICAL = "critical"


@dataclass
class HealthCheckResult:
    """Result of a health check."""

    name: str
    status: HealthStatus
    message: str
    details: Dict[str, Any]
    duration_ms: float
    timestamp: float

    @property
    def is_healthy(self) -> bool:
        """Check if the result indicates healthy status."""
        return self.status == HealthStatus.HEALTHY


class DatabaseHealthChecker:
    """Connectivity checks run at the start of every plan."""

    def __init__(self, db: Database):
        self.db = db

    async def check_all(self) -> Dict[str, HealthCheckResult]:
        """Run all health checks, one after another on the single connection."""
        results = {}
        for check in (self.check_connectivity, self.check_server_info):
            result = await check()
            results[result.name] = result
            if not result.is_healthy:
                break
        return results

    async def check_connectivity(self) -> HealthCheckResult:
        """Check basic database connectivity."""
        start_time = time.time()

        try:
            value = await self.db.fetchval("SELECT 1 AS test")
            duration_ms = (time.time() - start_time) * 1000

            if value != 1:
                return HealthCheckResult(
                    name="connectivity",
                    status=HealthStatus.CRITICAL,
                    message=f"Unexpected probe result: {value!r}",
                    details={"result": value},
                    duration_ms=duration_ms,
                    timestamp=time.time(),
                )

            return HealthCheckResult(
                name="connectivity",
                status=HealthStatus.HEALTHY,
                message="Database connection successful",
                details={"result": value},
                duration_ms=duration_ms,
                timestamp=time.time(),
            )

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(f"Database connectivity check failed: {e}")

            return HealthCheckResult(
                name="connectivity",
                status=HealthStatus.CRITICAL,
                message=f"Database connection failed: {e}",
                details={"error": str(e)},
                duration_ms=duration_ms,
                timestamp=time.time(),
            )

    async def check_server_info(self) -> HealthCheckResult:
        """Collect server version, database and user."""
        start_time = time.time()

        try:
            row = await self.db.fetchrow(
                "SELECT version() AS version, current_database() AS database, current_user AS user"
            )
            duration_ms = (time.time() - start_time) * 1000

            return HealthCheckResult(
                name="server_info",
                status=HealthStatus.HEALTHY,
                message="Server information retrieved",
                details={
                    "database": row["database"],
                    "user": row["user"],
                    "version": row["version"],
                },
                duration_ms=duration_ms,
                timestamp=time.time(),
            )

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(f"Server info check failed: {e}")

            return HealthCheckResult(
                name="server_info",
                status=HealthStatus.CRITICAL,
                message=f"Server info check failed: {e}",
                details={"error": str(e)},
                duration_ms=duration_ms,
                timestamp=time.time(),
            )
