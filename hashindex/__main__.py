"""Allow ``python -m hashindex``."""

import sys

from hashindex.main import main

sys.exit(main())
