"""Blob and media storage, image checks and resizing, token validation and environment configuration."""

__version__ = "0.1.0"