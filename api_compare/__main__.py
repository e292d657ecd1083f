import sys

from api_compare.main import main

sys.exit(main())
