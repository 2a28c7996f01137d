"""Run the mittorch supervisor."""

import sys

from mittorch.__main__ import main

if __name__ == "__main__":
    sys.exit(main())
