"""Emoji Gateway: co-create custom emoji with a Misskey bot."""

__version__ = "1.0.0"
