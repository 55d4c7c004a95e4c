import os
import tempfile
from pathlib import Path

import pytest

# Keep the module-level repository in splitbill.deps away from the working tree
os.environ.setdefault("DB_PATH", str(Path(tempfile.gettempdir()) / "splitbill-test-ledger.json"))
# splitbill.deps builds the OpenAI client at import time and it rejects an empty key
os.environ.setdefault("OPENROUTER_API_KEY", "test")

from splitbill.db.repository import LedgerRepository
from splitbill.ledger.members import MemberResolver
from splitbill.ledger.state import SessionController
from splitbill.models.schemas import FreeTextParticipant, PlatformParticipant


@pytest.fixture
def repo(tmp_path):
    repo = LedgerRepository(str(tmp_path / "ledger.json"))
    yield repo
    repo.close()


@pytest.fixture
def controller(repo):
    return SessionController(repo)


@pytest.fixture
def resolver(repo):
    return MemberResolver(repo)


@pytest.fixture
def alice():
    return PlatformParticipant(external_id=1, display_name="alice")


@pytest.fixture
def budi():
    return FreeTextParticipant(display_name="Budi")


@pytest.fixture
def session(controller, alice):
    return controller.create_session(100, alice, "Dinner")
