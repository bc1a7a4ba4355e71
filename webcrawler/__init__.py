"""
Web Crawler System

A bounded-concurrency, depth-limited web crawler built on asyncio.
"""

__version__ = "1.0.0"
__description__ = "A bounded-concurrency, depth-limited asyncio web crawler"
