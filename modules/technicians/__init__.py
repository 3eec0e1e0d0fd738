"""Technicians module package."""

from flask import Blueprint

bp = Blueprint("technicians", __name__, url_prefix="/technicians")

from . import models  # noqa: E402  pylint: disable=wrong-import-position
from . import routes  # noqa: E402  pylint: disable=wrong-import-position

__all__ = ["bp", "models", "routes"]
