"""Multi-tenant webhook delivery service with durable retry."""

__version__ = "0.1.0"
