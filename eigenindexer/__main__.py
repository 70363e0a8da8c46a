"""Run the indexer command line with python -m eigenindexer."""

import sys

from eigenindexer.cli import main

sys.exit(main())
