import sys

from geocode_tool.cli import main

sys.exit(main())
