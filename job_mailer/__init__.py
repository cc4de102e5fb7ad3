"""Accumulate job postings from an RSS feed and send them as email campaigns."""

__version__ = "0.1.0"
