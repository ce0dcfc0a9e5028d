"""Deterministic cloud resource names."""

import hashlib
from typing import Optional

# GCE resource names are limited to 63 characters.
MAX_NAME_LENGTH = 63

INSTANCE_GROUP_PREFIX = "k8s-ig"
BACKEND_PREFIX = "k8s-be"
URL_MAP_PREFIX = "k8s-um"
TARGET_PROXY_PREFIX = "k8s-tp"
FORWARDING_RULE_PREFIX = "k8s-fw"

# Separates the cluster name from the key, and namespace from name.
KEY_SEPARATOR = "--"


class Namer:
    """
    Maps Kubernetes ports and ingress keys to cloud resource names.

    Every name carries the cluster name so controllers of different clusters
    sharing a project never touch each other's resources, and a restarted
    controller finds the resources of its predecessor by name.
    """

    def __init__(self, cluster_name: str):
        """
        Initialize namer.

        Args:
            cluster_name: Cluster name tag
        """
        self.cluster_name = cluster_name

    def _prefix(self, kind: str) -> str:
        return f"{kind}-{self.cluster_name}{KEY_SEPARATOR}"

    @staticmethod
    def _truncate(name: str) -> str:
        if len(name) <= MAX_NAME_LENGTH:
            return name
        digest = hashlib.sha256(name.encode("utf-8")).hexdigest()[:8]
        return f"{name[:MAX_NAME_LENGTH - 9].rstrip('-')}-{digest}"

    def instance_group(self) -> str:
        """Name of the cluster wide instance group."""
        return self._truncate(f"{INSTANCE_GROUP_PREFIX}-{self.cluster_name}")

    def backend(self, port: int) -> str:
        """Name of the backend service (and health check) for a node port."""
        return self._truncate(f"{self._prefix(BACKEND_PREFIX)}{port}")

    @staticmethod
    def named_port(port: int) -> str:
        """Name of the instance group named port for a node port."""
        return f"port{port}"

    def _l7_name(self, kind: str, key: str) -> str:
        return self._truncate(f"{self._prefix(kind)}{key.replace('/', KEY_SEPARATOR)}")

    def url_map(self, key: str) -> str:
        """Name of the URL map of an ingress."""
        return self._l7_name(URL_MAP_PREFIX, key)

    def target_proxy(self, key: str) -> str:
        """Name of the target HTTP proxy of an ingress."""
        return self._l7_name(TARGET_PROXY_PREFIX, key)

    def forwarding_rule(self, key: str) -> str:
        """Name of the global forwarding rule of an ingress."""
        return self._l7_name(FORWARDING_RULE_PREFIX, key)

    def parse_backend_port(self, name: str) -> Optional[int]:
        """
        Recover the node port from a backend service name.

        Returns:
            Node port, or None when the name belongs to another cluster or kind
        """
        prefix = self._prefix(BACKEND_PREFIX)
        if not name.startswith(prefix):
            return None
        suffix = name[len(prefix):]
        if not suffix.isdigit():
            return None
        return int(suffix)

    def l7_resources(self, key: str) -> set[str]:
        """Names of the URL map, target proxy and forwarding rule of an ingress."""
        return {self.url_map(key), self.target_proxy(key), self.forwarding_rule(key)}

    def owns_l7_resource(self, name: str) -> bool:
        """
        Whether a URL map, proxy or forwarding rule name belongs to this cluster.

        Ingress keys are not recovered from names: truncated names keep no
        key, and a namespace may itself contain the separator.
        """
        return any(
            name.startswith(self._prefix(kind))
            for kind in (URL_MAP_PREFIX, TARGET_PROXY_PREFIX, FORWARDING_RULE_PREFIX)
        )
