"""Allow `python -m arc`."""
import sys

from .cli import main

sys.exit(main())
