"""
Pytest configuration for the CHIP-8 test suite.

The pygame frontend tests open a real pygame display and mixer.  SDL's
dummy drivers are forced here, before any test module imports pygame,
so the suite runs on machines with no screen or sound card:

    python -m pytest
"""

import os

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")


def pytest_configure(config):
    config.addinivalue_line("markers",
        "display: tests that open a pygame window (dummy SDL driver)")
