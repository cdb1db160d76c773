#!/usr/bin/env python3
"""
OAuth Authorization Status Checker

This script loads stored tokens and displays the authorization state. An
expiring token is refreshed as part of the check, exactly as an
application would do before an API call.

Usage:
    python scripts/check_auth.py

    # Verbose output with refresh window details
    python scripts/check_auth.py --verbose
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.oauth.config import OAuthClientConfig
from src.oauth.exceptions import ConfigurationError, OAuthError
from src.oauth.provider import OAuth2AuthProvider

# Setup logging
logging.basicConfig(
    level=logging.WARNING,  # Quiet by default
    format="%(message)s",
)
logger = logging.getLogger(__name__)


def format_time_remaining(seconds: float) -> str:
    """
    Format seconds into human-readable time remaining.

    Args:
        seconds: Number of seconds

    Returns:
        Formatted string (e.g., "2h 15m", "45m", "expired")
    """
    if seconds <= 0:
        return "expired"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)

    if hours > 0:
        return f"{hours}h {minutes}m"
    elif minutes > 0:
        return f"{minutes}m"
    else:
        return f"{int(seconds)}s"


async def check_authorization(verbose: bool = False) -> int:
    """
    Check and display authorization status.

    Args:
        verbose: Whether to show detailed information

    Returns:
        Exit code (0 if authorized, 1 if not authorized, 2 on error)
    """
    try:
        provider = OAuth2AuthProvider(OAuthClientConfig.from_env())
    except ConfigurationError as e:
        print("❌ CONFIGURATION ERROR")
        print()
        print(f"Error: {e}")
        print()
        return 2

    print("=" * 70)
    print("OAUTH AUTHORIZATION STATUS")
    print("=" * 70)
    print()

    try:
        await provider.initialize()
        info = await provider.get_auth_info()
    except OAuthError as e:
        print("❌ ERROR")
        print()
        print(f"[{e.code}] {e.message}")
        print()
        return 2

    if not info.is_authenticated:
        print("❌ NOT AUTHORIZED")
        print()
        print("To authorize, run:")
        print("    python scripts/authorize.py")
        print()
        return 1

    print("✅ AUTHORIZED")
    print()

    if info.expires_at is not None:
        remaining = (info.expires_at - datetime.now(timezone.utc)).total_seconds()
        print(f"Expires in:  {format_time_remaining(remaining)}")
        if verbose:
            print(f"Expires at:  {info.expires_at.isoformat()}")
    else:
        print("Expires in:  unknown")

    if verbose:
        print(f"Client ID:   {info.client_id}")
        print(f"Scopes:      {' '.join(info.scopes) or 'N/A'}")
        print(f"Token file:  {provider.config.token_file}")
        window = provider.refresh_window()
        if window is not None:
            print()
            print("Refresh window:")
            if window.should_refresh:
                print("  Refresh due: now")
            else:
                print(f"  Refresh in:  {format_time_remaining(window.time_until_refresh_ms / 1000)}")
            print(f"  Threshold:   {window.threshold_ms}ms (jitter {window.jitter_ms:+d}ms)")

    print()
    print("=" * 70)
    print()
    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Check OAuth authorization status",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show detailed token information",
    )

    args = parser.parse_args()

    return asyncio.run(check_authorization(verbose=args.verbose))


if __name__ == "__main__":
    sys.exit(main())
