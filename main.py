"""
maintainable — Entry Point.

Single entry point: `python main.py` starts the email daemon and the
daily reminder scheduler.
"""

import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from maintainable.bot.email_daemon import main

if __name__ == "__main__":
    main()
