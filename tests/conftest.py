import os
import sys

import pytest

# Top-level modules live at the repository root
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from server import create_app  # noqa: E402


@pytest.fixture
def app(tmp_path):
    return create_app({
        "UPLOAD_FOLDER": str(tmp_path / "uploads"),
        "ENCRYPTED_FOLDER": str(tmp_path / "uploads_encrypted"),
        "ENCRYPTION_AT_REST": True,
        "P2P_DISCOVERY": False,
    })


@pytest.fixture
def client(app):
    return app.test_client()
