#!/usr/bin/env python3
"""
OAuth Authorization Script

This script runs the interactive OAuth authorization flow: it starts a
local callback server, opens the authorization page in a browser and
saves the resulting tokens.

Usage:
    python scripts/authorize.py

    # Print the URL instead of opening a browser
    python scripts/authorize.py --no-browser

    # To revoke existing authorization
    python scripts/authorize.py --revoke

Prerequisites:
    - Environment variables must be set:
        export OAUTH_CLIENT_ID="your_client_id"
        export OAUTH_CLIENT_SECRET="your_client_secret"
        export OAUTH_SCOPES="scope1,scope2"
    - The redirect URI (default http://localhost:3000/oauth2callback) must be
      registered with the authorization server
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.oauth.browser import LoggingBrowserLauncher, WebBrowserLauncher
from src.oauth.config import OAuthClientConfig
from src.oauth.exceptions import (
    CallbackTimeoutError,
    ConfigurationError,
    OAuthError,
    StateMismatchError,
    UserDeniedError,
)
from src.oauth.provider import OAuth2AuthProvider

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def authorize(open_browser: bool = True, timeout: Optional[float] = None) -> int:
    """
    Run the authorization flow.

    Args:
        open_browser: Whether to automatically open browser
        timeout: Seconds to wait for the callback

    Returns:
        Exit code (0 for success, 1 for failure, 2 for configuration error)
    """
    try:
        config = OAuthClientConfig.from_env()
    except ConfigurationError as e:
        logger.error(f"❌ Configuration error: {e}")
        return 2

    launcher = WebBrowserLauncher() if open_browser else LoggingBrowserLauncher()
    provider = OAuth2AuthProvider(config, browser_launcher=launcher)

    try:
        await provider.initialize()

        if await provider.validate_auth():
            info = await provider.get_auth_info()
            logger.info("✅ Already authorized!")
            if info.expires_at:
                logger.info(f"   Token expires at {info.expires_at.isoformat()}")
            logger.info("   Use --revoke to re-authorize")
            return 0

        logger.info("Starting OAuth authorization flow...")
        await provider.get_auth_client(timeout=timeout)

    except UserDeniedError:
        logger.error("❌ Authorization was denied in the browser")
        return 1
    except StateMismatchError:
        logger.error("❌ Callback state did not match; the response was discarded")
        logger.error("   This can indicate a forged redirect. Please try again.")
        return 1
    except CallbackTimeoutError as e:
        logger.error(f"❌ {e.message}")
        return 1
    except OAuthError as e:
        logger.error(f"❌ Authorization failed [{e.code}]: {e.message}")
        return 1

    logger.info("✅ Authorization successful!")
    logger.info(f"   Tokens saved to: {config.token_file}")
    return 0


async def revoke() -> int:
    """
    Revoke current authorization.

    Returns:
        Exit code (0 for success, 1 for failure, 2 for configuration error)
    """
    try:
        provider = OAuth2AuthProvider(OAuthClientConfig.from_env())
    except ConfigurationError as e:
        logger.error(f"❌ Configuration error: {e}")
        return 2

    try:
        await provider.revoke()
    except OAuthError as e:
        logger.error(f"❌ Error revoking authorization: {e}")
        return 1

    logger.info("✅ Authorization revoked")
    logger.info(f"   Token file deleted: {provider.config.token_file}")
    logger.info("")
    logger.info("Run this script again to re-authorize")
    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="OAuth authorization for the token lifecycle manager",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Prerequisites:
  export OAUTH_CLIENT_ID='your_client_id'
  export OAUTH_CLIENT_SECRET='your_client_secret'
  export OAUTH_SCOPES='scope1,scope2'

Examples:
  # Run authorization flow
  python scripts/authorize.py

  # Revoke existing authorization
  python scripts/authorize.py --revoke
        """,
    )
    parser.add_argument(
        "--revoke",
        action="store_true",
        help="Revoke existing authorization and delete tokens",
    )
    parser.add_argument(
        "--no-browser",
        action="store_true",
        help="Don't automatically open browser (display URL only)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for the authorization callback",
    )

    args = parser.parse_args()

    if args.revoke:
        return asyncio.run(revoke())

    return asyncio.run(authorize(open_browser=not args.no_browser, timeout=args.timeout))


if __name__ == "__main__":
    sys.exit(main())
