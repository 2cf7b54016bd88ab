"""Allow ``python -m wireflow``."""

from wireflow.cli import main

raise SystemExit(main())
