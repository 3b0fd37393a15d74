"""API routers for the BrAPI importer."""

from brapi_importer.routers import import_router

__all__ = ["import_router"]
