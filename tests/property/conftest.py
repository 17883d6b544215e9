"""
Conftest for property-based tests.

Configures Hypothesis settings for the error monitor test suite.
"""

import pytest
from hypothesis import settings, Verbosity, Phase

# =============================================================================
# Hypothesis Profiles
# =============================================================================

# Default profile for regular test runs
settings.register_profile(
    "default",
    max_examples=100,
    deadline=None,  # Disable deadline for complex tests
    suppress_health_check=[],
    verbosity=Verbosity.normal,
)

# CI profile with more examples for thorough testing
settings.register_profile(
    "ci",
    max_examples=500,
    deadline=None,
    suppress_health_check=[],
    verbosity=Verbosity.normal,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
)

# Debug profile with verbose output
settings.register_profile(
    "debug",
    max_examples=50,
    deadline=None,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
)

# Quick profile for fast feedback during development
settings.register_profile(
    "quick",
    max_examples=20,
    deadline=None,
    verbosity=Verbosity.quiet,
    phases=[Phase.explicit, Phase.generate],  # Skip shrinking for speed
)

# Load the default profile
settings.load_profile("default")


# =============================================================================
# Pytest Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def python_stack():
    """Python traceback with one library frame between two project frames."""
    return (
        'Traceback (most recent call last):\n'
        '  File "/app/src/worker/jobs.py", line 88, in run_job\n'
        '    result = handler(payload)\n'
        '  File "/usr/lib/python3.12/site-packages/requests/api.py", line 59, in request\n'
        '    return session.request(method=method, url=url, **kwargs)\n'
        '  File "/app/src/worker/handlers.py", line 21, in handler\n'
        '    raise ValueError("invalid payload")\n'
        'ValueError: invalid payload\n'
    )


# =============================================================================
# Pytest Hooks
# =============================================================================

def pytest_configure(config):
    """Configure pytest for property tests."""
    # Register the property marker
    config.addinivalue_line(
        "markers", "property: mark test as property-based test using Hypothesis"
    )


def pytest_collection_modifyitems(config, items):
    """Add property marker to all tests in this directory."""
    for item in items:
        if "property" in str(item.fspath):
            item.add_marker(pytest.mark.property)
