from starlette.datastructures import UploadFile

from desci.core.config import settings

FORM = {
    "paperId": "u1",
    "title": "Reef Genomics",
    "authors[]": ["Ana Reyes", "Bo Chen"],
    "abstract": "Sequencing coral samples.",
    "keywords": "coral, genomics",
    "publisherId": "0.0.2002",
    "fee": "7.5",
}


def _upload(client, data=None, name="paper.txt", body=b"coral reef genomics", media_type="text/plain"):
    return client.post(
        "/api/papers/upload",
        data=data if data is not None else FORM,
        files={"file": (name, body, media_type)},
    )


def test_upload_creates_paper_with_content_topic(client, ledger, state):
    resp = _upload(client)
    assert resp.status_code == 201

    paper = resp.json()["paper"]
    assert paper["paperId"] == "u1"
    assert paper["authors"] == ["Ana Reyes", "Bo Chen"]
    assert paper["keywords"] == ["coral", "genomics"]
    assert paper["fee"] == 7.5
    assert paper["contentTopicId"] in ledger.topics
    assert ledger.topics[paper["contentTopicId"]] == "DeSci Paper Content: Reef Genomics"
    assert paper["fileId"] in state.blobs
    assert paper["size"] == len(b"coral reef genomics")

    content = client.get("/api/papers/u1/content")
    assert content.status_code == 200
    assert content.content == b"coral reef genomics"
    assert content.headers["content-type"].startswith("text/plain")


def test_upload_pdf(client, sample_pdf):
    with open(sample_pdf, "rb") as f:
        resp = _upload(client, name="paper.pdf", body=f.read(), media_type="application/pdf")
    assert resp.status_code == 201
    assert resp.json()["paper"]["mimetype"] == "application/pdf"


def test_oversized_upload_stores_nothing(client, state, ledger):
    state.settings.MAX_UPLOAD_BYTES = 10
    topics_before = dict(ledger.topics)

    resp = _upload(client, body=b"x" * 100)

    assert resp.status_code == 413
    assert client.get("/api/papers/u1").status_code == 404
    assert len(state.blobs) == 0
    assert ledger.topics == topics_before


def test_invalid_file_type(client):
    resp = _upload(client, name="tool.exe", media_type="application/octet-stream")
    assert resp.status_code == 400
    assert "Invalid file type" in resp.json()["detail"]


def test_missing_file(client):
    resp = client.post("/api/papers/upload", data={"paperId": "u1"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No file uploaded"


def test_missing_metadata(client):
    resp = _upload(client, data={"paperId": "u1", "title": "No authors"})
    assert resp.status_code == 400
    assert "authors" in resp.json()["detail"]


def test_upload_without_ledger_is_server_error(client, state):
    state.ledger = None
    resp = _upload(client)
    assert resp.status_code == 500
    assert len(state.blobs) == 0


def test_topic_failure_removes_stored_file(client, state, ledger):
    ledger.fail_on.add("create_topic")
    resp = _upload(client)

    assert resp.status_code == 500
    assert "create_topic failed" in resp.json()["detail"]
    assert len(state.blobs) == 0
    assert client.get("/api/papers/u1").status_code == 404


def test_upstream_errors_redacted_outside_development(client, ledger, monkeypatch):
    monkeypatch.setattr(settings, "ENVIRONMENT", "production")
    ledger.fail_on.add("create_topic")

    resp = _upload(client)
    assert resp.status_code == 500
    assert resp.json()["detail"] == "Server error occurred"


def test_duplicate_upload_conflicts(client, state):
    assert _upload(client).status_code == 201
    resp = _upload(client)
    assert resp.status_code == 409
    assert len(state.blobs) == 1


def test_upload_non_finite_fee_rejected(client, state, ledger):
    topics_before = dict(ledger.topics)
    for fee in ("NaN", "Infinity"):
        resp = _upload(client, data={**FORM, "fee": fee})
        assert resp.status_code == 400
    assert len(state.blobs) == 0
    assert ledger.topics == topics_before


def test_upload_file_closed_after_request(client, monkeypatch):
    closed = []
    original_close = UploadFile.close

    async def tracking_close(self):
        closed.append(self.filename)
        await original_close(self)

    monkeypatch.setattr(UploadFile, "close", tracking_close)

    assert _upload(client).status_code == 201
    assert _upload(client, name="tool.exe", media_type="application/octet-stream").status_code == 400
    assert {"paper.txt", "tool.exe"} <= set(closed)
