"""Allow running the CLI with python -m photocat."""

import sys

from photocat.cli import main

sys.exit(main())
