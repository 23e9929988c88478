"""
Browser session for the crawl agents and the stan.store enrichment agent.

One BrowserSession is created per invocation, handed to whatever needs a
page, and closed in a finally block. Stan enrichment opens one tab per
creator via new_tab(), which always closes the tab again.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Optional

from selenium import webdriver
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.firefox.options import Options as FirefoxOptions
from selenium.webdriver.firefox.service import Service as FirefoxService
from webdriver_manager.chrome import ChromeDriverManager
from webdriver_manager.firefox import GeckoDriverManager
from fake_useragent import UserAgent

from creator_graph.errors import BrowserLaunchError, ConfigurationError

log = logging.getLogger(__name__)

SUPPORTED_BROWSERS = ('chrome', 'firefox')
DEFAULT_PAGE_LOAD_TIMEOUT = 30


def normalize_browser(value: Optional[str]) -> str:
    name = (value or 'chrome').strip().lower()
    if name not in SUPPORTED_BROWSERS:
        raise ConfigurationError(
            f'Unknown browser: {value!r} (expected one of {", ".join(SUPPORTED_BROWSERS)})'
        )
    return name


def _random_user_agent() -> Optional[str]:
    try:
        return UserAgent().random
    except Exception as e:
        log.debug(f'fake_useragent unavailable, keeping driver default: {e}')
        return None


def _setup_chrome(headless: bool) -> webdriver.Chrome:
    """Set up Chrome WebDriver with anti-detection options."""
    chrome_options = Options()

    if headless:
        chrome_options.add_argument('--headless=new')

    chrome_options.add_argument('--disable-blink-features=AutomationControlled')
    chrome_options.add_argument('--no-sandbox')
    chrome_options.add_argument('--disable-dev-shm-usage')
    chrome_options.add_argument('--window-size=1280,800')
    chrome_options.add_experimental_option('excludeSwitches', ['enable-automation'])
    chrome_options.add_experimental_option('useAutomationExtension', False)

    ua = _random_user_agent()
    if ua:
        chrome_options.add_argument(f'user-agent={ua}')

    service = Service(ChromeDriverManager().install())
    driver = webdriver.Chrome(service=service, options=chrome_options)
    driver.execute_script("Object.defineProperty(navigator, 'webdriver', {get: () => undefined})")
    return driver


def _setup_firefox(headless: bool) -> webdriver.Firefox:
    firefox_options = FirefoxOptions()
    if headless:
        firefox_options.add_argument('-headless')
    firefox_options.set_preference('dom.webdriver.enabled', False)

    ua = _random_user_agent()
    if ua:
        firefox_options.set_preference('general.useragent.override', ua)

    service = FirefoxService(GeckoDriverManager().install())
    driver = webdriver.Firefox(service=service, options=firefox_options)
    driver.set_window_size(1280, 800)
    return driver


LAUNCHERS = {
    'chrome': _setup_chrome,
    'firefox': _setup_firefox,
}


class BrowserSession:
    """
    An owned WebDriver.

    Args:
        driver:       the live WebDriver
        browser_name: browser actually running ('chrome' / 'firefox')
        requested:    browser the caller asked for
        warning:      set when the requested browser failed and chrome was used
    """

    def __init__(self, driver, browser_name: str, requested: str,
                 warning: Optional[str] = None):
        self.driver = driver
        self.browser_name = browser_name
        self.requested = requested
        self.warning = warning
        self._closed = False

    @classmethod
    def launch(cls, requested: Optional[str] = 'chrome', headless: bool = True,
               page_load_timeout: float = DEFAULT_PAGE_LOAD_TIMEOUT,
               launchers: Optional[dict[str, Callable]] = None) -> 'BrowserSession':
        """
        Start the requested browser, falling back to chrome with a warning.
        Raises BrowserLaunchError when no browser can be started.
        """
        launchers = launchers or LAUNCHERS
        name = normalize_browser(requested)
        warning = None
        try:
            driver = launchers[name](headless)
            used = name
        except Exception as e:
            if name == 'chrome':
                raise BrowserLaunchError(f'failed to launch chrome ({e})') from e
            log.warning(f'{name} unavailable, falling back to chrome: {e}')
            warning = f'{name} unavailable; fell back to chrome ({e})'
            try:
                driver = launchers['chrome'](headless)
                used = 'chrome'
            except Exception as fallback_err:
                raise BrowserLaunchError(
                    f'failed to launch {name} ({e}) and chrome ({fallback_err})'
                ) from fallback_err

        try:
            driver.set_page_load_timeout(page_load_timeout)
        except Exception as e:
            log.debug(f'Could not set page load timeout: {e}')

        log.info(f'Browser ready: {used} (requested={name}, headless={headless})')
        return cls(driver, used, name, warning)

    # ------------------------------------------------------------------ #
    # Tabs
    # ------------------------------------------------------------------ #

    @contextmanager
    def new_tab(self):
        """Open a fresh tab, yield the driver focused on it, close it afterwards."""
        base_handle = self.driver.current_window_handle
        self.driver.switch_to.new_window('tab')
        try:
            yield self.driver
        finally:
            try:
                self.driver.close()
                self.driver.switch_to.window(base_handle)
            except Exception as e:
                log.debug(f'Tab cleanup failed: {e}')

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def close(self):
        """Quit the browser. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            self.driver.quit()
            log.debug(f'Browser closed ({self.browser_name})')
        except Exception as e:
            log.warning(f'Browser quit failed: {e}')

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
