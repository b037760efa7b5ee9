# core/__init__.py
"""Provider access, storage drivers and shared error types."""
