import sys

from pyhpfem.cli import main

sys.exit(main())
