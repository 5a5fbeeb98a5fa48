"""The drafts blueprint: autosaved tournament-creation drafts."""

from flask import Blueprint

bp = Blueprint("drafts", __name__, url_prefix="/drafts")

from . import routes  # noqa: E402, F401
