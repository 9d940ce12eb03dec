"""Provision tenant application instances onto a shared docker-compose + nginx topology."""

__version__ = "0.1.0"
