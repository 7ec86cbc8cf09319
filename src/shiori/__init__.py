"""Shiori: a self-hosted bookmark manager."""

__version__ = "1.8.0"
