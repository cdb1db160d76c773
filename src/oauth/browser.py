"""
Browser handoff for the interactive authorization flow.

The flow only needs "show this URL to the user". Launchers never raise:
when a browser cannot be opened the URL is printed so the user can copy it.
"""

import logging
import webbrowser
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class BrowserLauncher(ABC):
    """Capability for handing an authorization URL to the user."""

    @abstractmethod
    def open(self, url: str) -> bool:
        """
        Present the URL to the user.

        Returns:
            True if a browser was opened, False if the user must open it manually
        """


class WebBrowserLauncher(BrowserLauncher):
    """Opens the system default browser via the ``webbrowser`` module."""

    def open(self, url: str) -> bool:
        print("Please authorize the application by visiting:")
        print(f"\n  {url}\n")
        print("🌐 Opening browser automatically...")
        try:
            opened = webbrowser.open(url)
        except webbrowser.Error as e:
            logger.warning(f"Could not open browser automatically: {e}")
            opened = False

        if not opened:
            print("⚠️  Could not open browser.")
            print("   Please copy the URL above and paste it in your browser.")
        return opened


class LoggingBrowserLauncher(BrowserLauncher):
    """Headless launcher: prints the URL and never opens a browser."""

    def __init__(self, echo: bool = True):
        """
        Args:
            echo: Also print the URL to stdout (otherwise log only)
        """
        self.echo = echo

    def open(self, url: str) -> bool:
        logger.info("Browser launch disabled; authorization URL must be opened manually")
        if self.echo:
            print("📋 Copy this URL and paste it in your browser:")
            print(f"\n  {url}\n")
        return False
