"""Node pool: cluster nodes synced into one cloud instance group."""

import logging
from typing import Iterable, Optional

from .cloud.interfaces import InstanceGroups
from .errors import NotFoundError
from .models import InstanceGroup, NamedPort
from .naming import Namer
from .storage import Snapshotter

logger = logging.getLogger(__name__)


class NodePool:
    """
    Manages the cluster wide instance group and its members.

    The group holds every cluster node and carries one named port per node
    port served by a backend service.
    """

    def __init__(self, cloud: InstanceGroups, namer: Namer):
        """
        Initialize node pool.

        Args:
            cloud: Instance group operations
            namer: Cloud resource namer
        """
        self.cloud = cloud
        self.namer = namer
        self.snapshotter: Snapshotter[str, InstanceGroup] = Snapshotter()

    @property
    def instance_group_name(self) -> str:
        return self.namer.instance_group()

    def ensure_instance_group(self) -> InstanceGroup:
        """
        Get the cluster instance group, creating it when absent.

        Returns:
            The instance group
        """
        name = self.instance_group_name
        try:
            group = self.cloud.get_instance_group(name)
        except NotFoundError:
            logger.info(f"Creating instance group {name}")
            group = self.cloud.create_instance_group(name)
        self.snapshotter.add(name, group)
        return group

    def get(self, name: Optional[str] = None) -> InstanceGroup:
        """
        Get an instance group from the cloud.

        Args:
            name: Instance group name, the cluster group by default

        Returns:
            The instance group

        Raises:
            NotFoundError: If the group does not exist
        """
        name = name or self.instance_group_name
        try:
            group = self.cloud.get_instance_group(name)
        except NotFoundError:
            self.snapshotter.remove(name)
            raise
        self.snapshotter.add(name, group)
        return group

    def add(self, node_names: Iterable[str]) -> None:
        """Add nodes to the instance group. Nodes already in it are skipped."""
        group = self.ensure_instance_group()
        current = set(self.cloud.list_instances_in_instance_group(group.name))
        missing = sorted(set(node_names) - current)
        if not missing:
            return
        logger.info(f"Adding nodes {missing} to instance group {group.name}")
        self.cloud.add_instances_to_instance_group(group.name, missing)

    def remove(self, node_names: Iterable[str]) -> None:
        """Remove nodes from the instance group. Nodes not in it are skipped."""
        name = self.instance_group_name
        try:
            current = set(self.cloud.list_instances_in_instance_group(name))
        except NotFoundError:
            logger.debug(f"Instance group {name} does not exist, nothing to remove")
            return
        stale = sorted(set(node_names) & current)
        if not stale:
            return
        logger.info(f"Removing nodes {stale} from instance group {name}")
        self.cloud.remove_instances_from_instance_group(name, stale)

    def sync(self, node_names: Iterable[str]) -> None:
        """
        Make the instance group membership exactly ``node_names``.

        Members that are not cluster nodes anymore, including instances that
        were deleted from the cloud, are removed.

        Args:
            node_names: Names of every current cluster node
        """
        desired = set(node_names)
        group = self.ensure_instance_group()
        current = set(self.cloud.list_instances_in_instance_group(group.name))

        missing = sorted(desired - current)
        stale = sorted(current - desired)
        if missing:
            logger.info(f"Adding nodes {missing} to instance group {group.name}")
            self.cloud.add_instances_to_instance_group(group.name, missing)
        if stale:
            logger.info(f"Removing nodes {stale} from instance group {group.name}")
            self.cloud.remove_instances_from_instance_group(group.name, stale)
        if not missing and not stale:
            logger.debug(f"Instance group {group.name} already has {len(current)} nodes")

    def add_named_port(self, port: int) -> tuple[InstanceGroup, NamedPort]:
        """
        Make sure the instance group serves ``port`` through a named port.

        Returns:
            Tuple of (instance group, named port)
        """
        group = self.ensure_instance_group()
        named_port = self.cloud.add_port_to_instance_group(
            group.name, port, self.namer.named_port(port)
        )
        return group, named_port

    def remove_named_port(self, port: int) -> None:
        """Drop the named port of ``port``. A missing group is ignored."""
        name = self.instance_group_name
        try:
            self.cloud.remove_port_from_instance_group(name, port)
        except NotFoundError:
            logger.debug(f"Instance group {name} does not exist, no named port to remove")

    def shutdown(self) -> None:
        """Delete the cluster instance group if it exists."""
        name = self.instance_group_name
        try:
            logger.info(f"Deleting instance group {name}")
            self.cloud.delete_instance_group(name)
        except NotFoundError:
            logger.debug(f"Instance group {name} already deleted")
        self.snapshotter.remove(name)
