"""Selenium browser management shared by the crawl and enrichment agents."""

from scrapers.browser import BrowserSession, normalize_browser

__all__ = ['BrowserSession', 'normalize_browser']
