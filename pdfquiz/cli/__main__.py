"""Allow ``python -m pdfquiz.cli`` execution."""

import sys

from pdfquiz.cli.commands import main

sys.exit(main())
