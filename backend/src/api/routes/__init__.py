"""API route handlers for the briefing service."""

from src.api.routes import briefing as briefing
from src.api.routes import health as health
