"""Misskey REST API client."""

from .client import MisskeyClient, MisskeyAPIError, UploadResult

__all__ = ["MisskeyClient", "MisskeyAPIError", "UploadResult"]
