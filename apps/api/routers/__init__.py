"""Routers package."""

from . import (
    health,
    generate,
    calibrations,
)
