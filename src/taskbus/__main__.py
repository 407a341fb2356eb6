import sys

from taskbus.cli import main

sys.exit(main())
