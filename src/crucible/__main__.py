import sys

from crucible.cli.main import main

sys.exit(main())
