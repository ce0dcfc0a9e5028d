"""HTTP health checks, one per backend node port."""

import logging

from .cloud.interfaces import SingleHealthCheck
from .errors import NotFoundError
from .models import ClusterManagerConfig, HealthCheck
from .naming import Namer

logger = logging.getLogger(__name__)

# Fields compared to decide whether an existing health check needs an update.
_COMPARED_FIELDS = (
    "port",
    "request_path",
    "check_interval_sec",
    "timeout_sec",
    "healthy_threshold",
    "unhealthy_threshold",
)


class HealthChecker:
    """
    Thin wrapper around the health check API.

    Ordering against backend services is the caller's job: the Backend Pool
    adds a health check before its backend service and deletes it after.
    """

    def __init__(self, cloud: SingleHealthCheck, namer: Namer, config: ClusterManagerConfig):
        self.cloud = cloud
        self.namer = namer
        self.config = config

    def _desired(self, port: int) -> HealthCheck:
        return HealthCheck(
            name=self.namer.backend(port),
            port=port,
            request_path=self.config.health_check_path,
            check_interval_sec=self.config.health_check_interval_sec,
            timeout_sec=self.config.health_check_timeout_sec,
            healthy_threshold=self.config.healthy_threshold,
            unhealthy_threshold=self.config.unhealthy_threshold,
        )

    def add(self, port: int) -> HealthCheck:
        """
        Create the health check for ``port``, or update it if its settings drifted.

        Returns:
            The health check as stored in the cloud
        """
        desired = self._desired(port)
        try:
            existing = self.cloud.get_http_health_check(desired.name)
        except NotFoundError:
            logger.info(f"Creating health check {desired.name} on port {port} path {desired.request_path}")
            return self.cloud.create_http_health_check(desired)

        if any(getattr(existing, f) != getattr(desired, f) for f in _COMPARED_FIELDS):
            logger.info(f"Updating health check {desired.name}, path {existing.request_path} -> {desired.request_path}")
            return self.cloud.update_http_health_check(desired)
        return existing

    def delete(self, port: int) -> None:
        """
        Delete the health check for ``port``.

        Raises:
            NotFoundError: If it does not exist
            ResourceInUseError: If a backend service still uses it
        """
        name = self.namer.backend(port)
        logger.info(f"Deleting health check {name}")
        self.cloud.delete_http_health_check(name)

    def get(self, port: int) -> HealthCheck:
        return self.cloud.get_http_health_check(self.namer.backend(port))
