# bulkdispatch/infra/health_checks_async.py
from __future__ import annotations
import time
from typing import Any, Dict
from enum import Enum

from bulkdispatch.core.errors import StoreError
from bulkdispatch.core.ports import AsyncRecipientStore
from bulkdispatch.infra.db_async import get_pool, pool_stats
from bulkdispatch.infra.logging_config import get_logger

logger = get_logger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class AsyncHealthCheck:
    """Base class for async health checks"""

    def __init__(self, name: str, critical: bool = True):
        self.name = name
        self.critical = critical

    async def check(self) -> Dict[str, Any]:
        """
        Perform health check.
        Returns dict with 'status', 'details', and optionally 'error'
        """
        raise NotImplementedError


class AsyncDatabaseHealthCheck(AsyncHealthCheck):
    """Check database connectivity and the recipients table"""

    def __init__(self):
        super().__init__("database", critical=True)

    async def check(self) -> Dict[str, Any]:
        start = time.time()

        try:
            pool = await get_pool()
            async with pool.acquire() as conn:
                result = await conn.fetchval("SELECT 1")
                if result != 1:
                    return {
                        "status": HealthStatus.UNHEALTHY,
                        "details": "Unexpected query result",
                        "error": f"Expected 1, got {result}"
                    }

                if await conn.fetchval("SELECT to_regclass('recipients')") is None:
                    return {
                        "status": HealthStatus.UNHEALTHY,
                        "details": "Missing required tables",
                        "error": "Missing: recipients"
                    }

                duration = time.time() - start
                if duration > 1.0:
                    return {
                        "status": HealthStatus.DEGRADED,
                        "details": f"Slow database response: {duration:.3f}s",
                        "response_time": duration
                    }

                return {
                    "status": HealthStatus.HEALTHY,
                    "details": "Database operational",
                    "response_time": duration,
                    "pool": pool_stats()
                }

        except Exception as exc:
            logger.error("Database health check failed", exc_info=True)
            return {
                "status": HealthStatus.UNHEALTHY,
                "details": "Database connection failed",
                "error": str(exc)[:200]
            }


class AsyncRecipientStoreHealthCheck(AsyncHealthCheck):
    """Check the recipient store answers counts (any backend)"""

    def __init__(self, store: AsyncRecipientStore):
        super().__init__("recipient_store", critical=True)
        self.store = store

    async def check(self) -> Dict[str, Any]:
        try:
            pending = await self.store.count_pending()
            return {
                "status": HealthStatus.HEALTHY,
                "details": "Recipient store operational",
                "pending": pending
            }
        except StoreError as exc:
            logger.error("Recipient store health check failed", exc_info=True)
            return {
                "status": HealthStatus.UNHEALTHY,
                "details": "Recipient store check failed",
                "error": str(exc)[:200]
            }


class TransportHealthCheck(AsyncHealthCheck):
    """
    Report the transport connection.

    Not critical: the server keeps serving observers while the supervisor
    reconnects.
    """

    def __init__(self, supervisor):
        super().__init__("transport", critical=False)
        self.supervisor = supervisor

    async def check(self) -> Dict[str, Any]:
        if self.supervisor.connected:
            return {"status": HealthStatus.HEALTHY, "details": "Transport connected"}
        if self.supervisor.logged_out:
            return {"status": HealthStatus.DEGRADED, "details": "Transport logged out"}
        return {"status": HealthStatus.DEGRADED, "details": "Transport reconnecting"}


class AsyncHealthChecker:
    """Aggregate async health checks"""

    def __init__(
        self,
        store: AsyncRecipientStore,
        supervisor=None,
        *,
        include_database: bool = True,
    ):
        self.checks: list[AsyncHealthCheck] = []
        if include_database:
            self.checks.append(AsyncDatabaseHealthCheck())
        self.checks.append(AsyncRecipientStoreHealthCheck(store))
        if supervisor is not None:
            self.checks.append(TransportHealthCheck(supervisor))

    async def run_checks(self, include_non_critical: bool = True) -> Dict[str, Any]:
        """
        Run all health checks.

        Returns:
            {
                "status": "healthy" | "degraded" | "unhealthy",
                "checks": {...},
                "timestamp": float
            }
        """
        results = {}
        overall_status = HealthStatus.HEALTHY

        for check in self.checks:
            if not include_non_critical and not check.critical:
                continue

            result = await check.check()
            results[check.name] = result

            if result["status"] == HealthStatus.UNHEALTHY and check.critical:
                overall_status = HealthStatus.UNHEALTHY
            elif result["status"] != HealthStatus.HEALTHY and overall_status == HealthStatus.HEALTHY:
                overall_status = HealthStatus.DEGRADED

        return {
            "status": overall_status.value,
            "checks": results,
            "timestamp": time.time()
        }

