"""Pytest configuration and shared fixtures."""

import logging

from hypothesis import settings

# Create a profile named "no_deadline" with deadline disabled.
settings.register_profile("no_deadline", deadline=None)
settings.load_profile("no_deadline")

logging.getLogger("vaultsandbox").setLevel(logging.DEBUG)
