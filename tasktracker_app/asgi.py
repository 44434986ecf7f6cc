"""ASGI entry point: ``uvicorn tasktracker_app.asgi:app``."""

from .logging_setup import setup_logging
from .main import create_app
from .settings import get_settings

settings = get_settings()
setup_logging(settings.LOG_LEVEL)

app = create_app(settings)
