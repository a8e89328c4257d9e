"""REST API for workflow administration and lead ingest."""

from .app import create_app, run_api_server

__all__ = ["create_app", "run_api_server"]
