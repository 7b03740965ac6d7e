"""
Gardenit Notifications — Entry Point.

Single entry point: `python main.py` starts the Telegram application and
the notification tick.
"""

import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from gardenit.bot.app import main

if __name__ == "__main__":
    main()
