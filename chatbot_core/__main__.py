import sys

from chatbot_core.cli import main

sys.exit(main())
