import sys

from agent_bundler.cli import main


sys.exit(main())
