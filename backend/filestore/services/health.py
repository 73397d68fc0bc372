import asyncio
import logging

from filestore.core.errors import BackendUnavailable, FileStorageError
from filestore.schemas import HealthReport
from filestore.services.storage import StorageService

logger = logging.getLogger(__name__)


async def check_storage_health(storage: StorageService, timeout: float) -> HealthReport:
    try:
        await asyncio.wait_for(storage.list_buckets(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Object store health check timed out after %.1fs", timeout)
        return HealthReport(status="Unhealthy", description="Object store health check timed out.")
    except BackendUnavailable as exc:
        logger.warning("Object store unreachable: %s", exc.detail or exc.message)
        return HealthReport(status="Unhealthy", description="Object store is unreachable.")
    except FileStorageError as exc:
        logger.warning("Object store health check failed: %s", exc.detail or exc.message)
        return HealthReport(status="Unhealthy", description="Object store encountered an error.")
    return HealthReport(status="Healthy", description="Object store is available.")
