import sys

from healthprobe.app import main

sys.exit(main())
