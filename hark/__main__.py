import sys

from hark.main import main

sys.exit(main())
