import os

# Deterministic, offline configuration for every test
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["LEDGER_ENABLED"] = "false"
os.environ["OPENAI_API_KEY"] = ""
os.environ["USE_VLLM_FALLBACK"] = "false"
os.environ["ENVIRONMENT"] = "development"
os.environ["PAYMENT_MODE"] = "simulated"
os.environ.setdefault("LOG_DIR", os.path.join(os.path.dirname(__file__), ".logs"))

import pytest
from fastapi.testclient import TestClient
from reportlab.pdfgen import canvas

from desci.core.app_state import AppState
from desci.core.config import Settings
from desci.main import create_app
from desci.services.blob_store import InMemoryBlobStore
from desci.services.paper_store import InMemoryPaperStore

from tests.mocks import FakeLedger

MAIN_TOPIC = "0.0.1000"


@pytest.fixture(scope="session")
def sample_pdf(tmp_path_factory):
    path = tmp_path_factory.mktemp("data") / "sample.pdf"
    c = canvas.Canvas(str(path))
    c.drawString(100, 800, "ABSTRACT This paper studies coral reef genomics.")
    c.drawString(100, 780, "METHODOLOGY We sequence samples.")
    c.drawString(100, 760, "RESULTS Diversity dropped by 20%.")
    c.save()
    return path


@pytest.fixture
def ledger():
    return FakeLedger(known_topics=[MAIN_TOPIC])


@pytest.fixture
def state(ledger):
    return AppState(
        settings=Settings(),
        store=InMemoryPaperStore(),
        blobs=InMemoryBlobStore(),
        ledger=ledger,
        main_topic_id=MAIN_TOPIC,
    )


@pytest.fixture
def client(state):
    return TestClient(create_app(state))


@pytest.fixture
def paper_payload():
    return {
        "paperId": "p1",
        "title": "Test",
        "authors": ["A"],
        "abstract": "x",
        "publisherId": "pub1",
        "fee": 5,
    }
