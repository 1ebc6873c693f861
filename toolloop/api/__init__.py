"""
FastAPI server module for ToolLoop.

Provides session endpoints for the orchestration loop and an
OpenAI-compatible chat completion endpoint.
"""

from .main import app, create_app

__all__ = ["app", "create_app"]
