"""API routers for the provisioner service."""

from provisioner.routers import health, jobs, metrics

__all__ = ["health", "jobs", "metrics"]
