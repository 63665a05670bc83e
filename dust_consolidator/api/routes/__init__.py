"""API route modules."""

from dust_consolidator.api.routes import gateway, health, jobs, quotes, sponsorship

__all__ = ["gateway", "health", "jobs", "quotes", "sponsorship"]
