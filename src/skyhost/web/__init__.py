"""HTTP surface: the ``/api`` routes and the bundled web app."""

from skyhost.web.app import create_app, create_phd2_router

__all__ = ["create_app", "create_phd2_router"]
