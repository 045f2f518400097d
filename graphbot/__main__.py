import sys

from graphbot.cli import main

sys.exit(main())
