"""Configure pytest for the billing gateway."""
import os
import sys
import tempfile
from pathlib import Path

import pytest

# =============================================================================
# Test Environment Configuration
# =============================================================================
# Set environment for tests BEFORE any imports
# app.main loads config at import time and fails fast without Stripe settings
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_0123456789abcdef")
os.environ.setdefault("STRIPE_ENDPOINT_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_PLAN_ID", "plan_test_team")
os.environ.setdefault("URL_APP", "http://app.test")
os.environ.setdefault("URL_API", "http://api.test")
os.environ.setdefault(
    "BILLING_DB_PATH", str(Path(tempfile.gettempdir()) / "billing-gateway-test.db")
)

# Add project root for package imports
project_root = Path(__file__).parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


@pytest.fixture
def fresh_database(tmp_path, monkeypatch):
    """Point persistence at an empty per-test database file."""
    import persistence.db as db_module

    monkeypatch.setattr(db_module, "DB_PATH", tmp_path / "billing.db")
    with db_module._init_lock:
        db_module._initialized = False
    db_module.close_db()

    db_module.init_db()
    yield db_module.DB_PATH
    db_module.reset_db()
    db_module.close_db()
