import sys

from barcode_gaps.cli import main

sys.exit(main())
