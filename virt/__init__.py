"""VIRT — a small name registry and resolver for ``virt://`` addresses."""

__version__ = "0.1.0"
