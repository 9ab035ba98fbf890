import sys

from wavegraph.cli import main

sys.exit(main())
