"""LB Controller - syncs Kubernetes Ingresses into cloud L7 load balancers."""

__version__ = "0.1.0"
