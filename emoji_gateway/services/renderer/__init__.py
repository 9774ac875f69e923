"""Font/renderer service client."""

from .client import RendererClient, RendererError, build_render_request

__all__ = ["RendererClient", "RendererError", "build_render_request"]
