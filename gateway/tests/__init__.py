"""Test package for chat core unit and integration tests."""

import logging

logging.getLogger("asyncio").setLevel(logging.ERROR)
