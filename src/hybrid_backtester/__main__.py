"""Allow ``python -m hybrid_backtester``."""

import sys

from hybrid_backtester.cli import main

if __name__ == "__main__":
    sys.exit(main())
