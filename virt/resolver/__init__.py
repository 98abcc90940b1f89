"""Resolver — turn a ``virt://`` address into content or a fallback page."""
