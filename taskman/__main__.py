"""Allow ``python -m taskman``."""

import sys

from .cli import main


sys.exit(main())
