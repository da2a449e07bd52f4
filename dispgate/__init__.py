"""HTTP dispatch gateway: local routes, forwarding of API requests to backend processors, logging, config and MySQL helpers."""

__version__ = "1.0.0"