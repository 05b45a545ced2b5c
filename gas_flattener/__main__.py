"""Allow ``python -m gas_flattener``."""

import sys

from gas_flattener.cli import main

if __name__ == "__main__":
    sys.exit(main())
