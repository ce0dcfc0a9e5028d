"""Kubernetes API client for the objects the controller reads."""

import logging
from typing import Optional

from kubernetes import client, config
from kubernetes.client import ApiClient, CoreV1Api, NetworkingV1Api
from tenacity import retry, stop_after_attempt, wait_exponential

from glbc_pools import ConfigurationError

from .config import RunMode, Settings

logger = logging.getLogger(__name__)


class KubeConnection:
    """Read-only connection to the cluster the controller serves."""

    def __init__(self, settings: Settings):
        """
        Initialize connection.

        Args:
            settings: Application settings

        Raises:
            ConfigurationError: If the client cannot be configured
        """
        self.settings = settings
        self._api_client: Optional[ApiClient] = None
        self._core_v1: Optional[CoreV1Api] = None
        self._networking_v1: Optional[NetworkingV1Api] = None

        self._initialize_client()

    def _initialize_client(self):
        """Initialize Kubernetes API client for the run mode."""
        mode = self.settings.run_mode
        try:
            if mode == RunMode.IN_CLUSTER:
                config.load_incluster_config()
                self._api_client = ApiClient()
            elif mode == RunMode.PROXY:
                # kubectl proxy handles authentication
                configuration = client.Configuration()
                configuration.host = self.settings.proxy_url
                self._api_client = ApiClient(configuration)
            else:
                config.load_kube_config(
                    config_file=self.settings.kubeconfig_path,
                    context=self.settings.kube_context,
                )
                self._api_client = ApiClient()

            self._core_v1 = CoreV1Api(self._api_client)
            self._networking_v1 = NetworkingV1Api(self._api_client)

        except Exception as e:
            raise ConfigurationError(f"Failed to initialize kubernetes client ({mode.value}): {e}") from e

        logger.info(f"Kubernetes client ready ({mode.value})")

    @property
    def core_v1(self) -> CoreV1Api:
        """Get CoreV1Api instance."""
        if not self._core_v1:
            raise RuntimeError("Kubernetes connection not initialized")
        return self._core_v1

    @property
    def networking_v1(self) -> NetworkingV1Api:
        """Get NetworkingV1Api instance."""
        if not self._networking_v1:
            raise RuntimeError("Kubernetes connection not initialized")
        return self._networking_v1

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
    )
    def list_ingresses(self) -> list[client.V1Ingress]:
        """
        List Ingresses in every namespace.

        Returns:
            List of V1Ingress

        Raises:
            ApiException: If the last attempt fails
        """
        return self.networking_v1.list_ingress_for_all_namespaces().items

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
    )
    def list_services(self) -> list[client.V1Service]:
        """List Services in every namespace."""
        return self.core_v1.list_service_for_all_namespaces().items

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
    )
    def list_nodes(self) -> list[client.V1Node]:
        """List cluster Nodes."""
        return self.core_v1.list_node().items

    def close(self):
        """Close the connection."""
        if self._api_client:
            self._api_client.close()
            self._api_client = None
        self._core_v1 = None
        self._networking_v1 = None
