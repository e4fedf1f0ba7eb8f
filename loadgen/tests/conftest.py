"""
Pytest configuration for load generation controller tests
"""

import pytest
import sys
from pathlib import Path

# Add repository root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from loadgen.runtime.controller import GeneratorController
from loadgen.runtime.local_host import InMemoryHost
from loadgen.tests.helpers import FakeClock


@pytest.fixture
def clock():
    """Provide a fake clock starting at t=0."""
    return FakeClock()


@pytest.fixture
def host():
    """In-memory host driven manually (no dispatcher thread)."""
    return InMemoryHost(enforce_privileges=True)


@pytest.fixture
def controller(host):
    """Controller attached to the manual host."""
    controller = GeneratorController(host)
    controller.attach()
    return controller
