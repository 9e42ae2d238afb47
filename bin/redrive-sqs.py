import sys

from redrive.command import main

sys.exit(main())
