# conftest.py
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent
BACKEND = ROOT / "backend"
if str(BACKEND) not in sys.path:
    sys.path.insert(0, str(BACKEND))


@pytest.fixture(autouse=True)
def reset_encryption_manager():
    """
    Autouse fixture so every test reads FIELD_ENCRYPTION_KEYS afresh.
    """
    from edc.encryption import EncryptionManager

    EncryptionManager.reset()
    yield
    EncryptionManager.reset()
