"""Routers package."""

from . import (
    health,
    keywords,
    reports,
    settings,
    cron,
)
