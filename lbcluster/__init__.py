"""A TCP load balancer with workers, a replicator and a test client."""

__version__ = "0.1.0"