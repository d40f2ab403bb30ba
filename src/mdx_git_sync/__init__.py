"""Sync MDX/Markdown content from git repositories into a content database."""

__version__ = "0.3.0"
