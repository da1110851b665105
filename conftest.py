"""Configure pytest for the essay checkout project."""
import os
import sys
from pathlib import Path

# =============================================================================
# Test Environment Configuration
# =============================================================================
# Set environment for tests BEFORE any imports so app.main builds its
# module-level app with mock integrations
os.environ.setdefault("ENV", "test")
for _name in ("PAYMENT_PROVIDER", "GENERATION_BACKEND", "GENERATION_BACKEND_URL"):
    os.environ.pop(_name, None)

# Project root holds the top-level packages (app, pricing, billing, ...)
project_root = Path(__file__).parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


def pytest_configure(config):
    """Ensure paths and environment are set before test collection."""
    os.environ.setdefault("ENV", "test")

    root = str(Path(__file__).parent)
    if root not in sys.path:
        sys.path.insert(0, root)
