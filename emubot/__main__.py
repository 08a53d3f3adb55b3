import sys

from emubot.cli import main

sys.exit(main())
