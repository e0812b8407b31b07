"""
Roam — Entry Point.

Single entry point: `python main.py` bootstraps the database and prints
today's agenda.
"""

import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from src.app import main

if __name__ == "__main__":
    main()
