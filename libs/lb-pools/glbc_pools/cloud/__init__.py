"""Cloud capability interfaces and their implementations."""

from .fake import FakeCall, FakeCloud, FakeCloudStore
from .interfaces import BackendServices, InstanceGroups, LoadBalancers, SingleHealthCheck

__all__ = [
    "InstanceGroups",
    "BackendServices",
    "SingleHealthCheck",
    "LoadBalancers",
    "FakeCloud",
    "FakeCloudStore",
    "FakeCall",
]
