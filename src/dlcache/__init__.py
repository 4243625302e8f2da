"""
Download cache: a single-flight, disk-backed cache for fetched web pages.
"""

__version__ = "0.1.0"
