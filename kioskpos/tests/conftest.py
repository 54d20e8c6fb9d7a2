import os
import sys

import pytest

# Allow running pytest from either the repo root or from within `kioskpos/`.
# Tests import `kioskpos.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from kioskpos.app.tenancy import TenantContext  # noqa: E402
from kioskpos.tests.fakedb import BIZ, OTHER_BIZ, USER, FakeDB  # noqa: E402

@pytest.fixture
def db():
    return FakeDB()

@pytest.fixture
def conn(db):
    return db.connect()

@pytest.fixture
def ctx():
    return TenantContext(business_id=BIZ, user_id=USER)

@pytest.fixture
def other_ctx():
    return TenantContext(business_id=OTHER_BIZ, user_id=USER)
