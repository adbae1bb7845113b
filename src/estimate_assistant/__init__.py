"""Estimate assistant backend: chat relay over the Assistants API plus PDF estimates."""

__version__ = "0.1.0"
