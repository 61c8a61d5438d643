"""Logging and request instrumentation for the registrations service."""

from __future__ import annotations

from fastapi import FastAPI

from clubhub.obs import logging as obs_logging
from clubhub.obs import middleware
from clubhub.settings import settings


def setup(app: FastAPI) -> bool:
	"""Install JSON logging and the request middleware once per application."""
	if not settings.obs_enabled or getattr(app.state, "obs_installed", False):
		return False
	obs_logging.configure_logging()
	middleware.install(app)
	app.state.obs_installed = True
	return True


__all__ = ["setup"]
