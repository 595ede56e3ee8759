"""Allow `python -m voxledger` to run the CLI."""

import asyncio
import sys

from voxledger.main import main

sys.exit(asyncio.run(main()))
