# backend/notifier/__init__.py
"""
Notifier backend application package.

This package contains:
- main: FastAPI application entrypoint
- notifications: recipient directory, channel senders, dispatcher
- utils: shared helpers (environment variable access)
"""
