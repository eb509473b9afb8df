"""WSGI entry point, e.g. ``gunicorn wsgi:application``."""

from facility_reservation.factory import create_web_app

application = create_web_app()
