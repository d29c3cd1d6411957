"""
Entry point for running as module: python -m src
"""

import sys

from dotenv import load_dotenv

load_dotenv()

from .cli import main  # noqa: E402

if __name__ == "__main__":
    sys.exit(main())
