from .base import BaseScraper, BrowserPool, launch_stealth_browser
from .codes import CodeResolver
from .directory import DirectoryScraper
from .listing import ListingScraper

__all__ = [
    "BaseScraper",
    "BrowserPool",
    "CodeResolver",
    "DirectoryScraper",
    "ListingScraper",
    "launch_stealth_browser",
]
