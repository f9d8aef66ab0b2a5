"""Core module for briefing configuration and utilities."""
