import argparse

import httpx

from desci.cli import ApiClient, DesciAgentCLI, build_parser, describe_http_error
from desci.core.config import Settings


class ScriptedUI:
    """Feeds canned answers and records everything shown."""

    def __init__(self, answers):
        self.answers = list(answers)
        self.lines = []
        self.quotes = []
        self.papers = []

    def _show(self, kind, message):
        self.lines.append((kind, message))

    def info(self, message):
        self._show("info", message)

    def success(self, message):
        self._show("success", message)

    def warning(self, message):
        self._show("warning", message)

    def error(self, message):
        self._show("error", message)

    def rule(self, title=""):
        pass

    def reply(self, speaker, text):
        self._show(speaker, text)

    def ask(self, message, default=None):
        return self.answers.pop(0)

    def ask_float(self, message, default):
        return float(self.answers.pop(0))

    def confirm(self, message, default=True):
        return False

    def choose(self, message, choices):
        return self.answers.pop(0)

    def display_papers(self, papers, title="Papers"):
        self.papers.append(papers)

    def display_quote(self, quote):
        self.quotes.append(quote)


def _api(handler):
    return ApiClient("http://desci.test", transport=httpx.MockTransport(handler))


def test_research_loop_shows_quote():
    sent = []

    def handler(request):
        if request.url.path == "/api/chat/sessions":
            return httpx.Response(201, json={"sessionId": "s1"})
        body = request.read().decode()
        sent.append(body)
        if "/quote" in body:
            return httpx.Response(
                200, json={"reply": "Total cost: 5.25 tokens", "stage": "quoted", "quote": {"totalCost": 5.25}}
            )
        return httpx.Response(200, json={"reply": "Relevant papers:", "stage": "papers-selected"})

    ui = ScriptedUI(["/search coral", "/quote", "/exit"])
    DesciAgentCLI(Settings(), api=_api(handler), ui=ui).cmd_research()

    assert len(sent) == 2
    assert ui.quotes == [{"totalCost": 5.25}]
    assert ("Agent [quoted]", "Total cost: 5.25 tokens") in ui.lines


def test_chat_error_is_reported():
    def handler(request):
        return httpx.Response(500, json={"detail": "Server error occurred"})

    ui = ScriptedUI(["hello"])
    DesciAgentCLI(Settings(), api=_api(handler), ui=ui).cmd_chat()

    assert ("error", "Chat error: Server responded 500: Server error occurred") in ui.lines


def test_chat_displays_matched_papers():
    def handler(request):
        return httpx.Response(200, json={"reply": "Found one", "papers": [{"paperId": "p1", "title": "T"}]})

    ui = ScriptedUI(["coral", "exit"])
    DesciAgentCLI(Settings(), api=_api(handler), ui=ui).cmd_chat()

    assert ui.papers == [[{"paperId": "p1", "title": "T"}]]


def test_upload_sends_list_fields(tmp_path):
    paper = tmp_path / "paper.txt"
    paper.write_text("coral reef genomics")
    captured = {}

    def handler(request):
        captured["body"] = request.read()
        captured["path"] = request.url.path
        return httpx.Response(201, json={"paper": {"paperId": "u1", "contentTopicId": "0.0.5001"}})

    args = build_parser().parse_args([
        "upload", "--file", str(paper), "--paper-id", "u1", "--title", "Reefs",
        "--authors", "Ana, Bo", "--abstract", "x", "--keywords", "coral",
        "--publisher-id", "0.0.2002", "--fee", "7.5",
    ])
    ui = ScriptedUI([])
    DesciAgentCLI(Settings(), api=_api(handler), ui=ui).cmd_upload(args)

    assert captured["path"] == "/api/papers/upload"
    assert captured["body"].count(b'name="authors[]"') == 2
    assert b"coral reef genomics" in captured["body"]
    assert ("success", "Upload successful: u1 (content topic 0.0.5001)") in ui.lines


def test_upload_missing_file(tmp_path):
    args = argparse.Namespace(
        file=str(tmp_path / "nope.pdf"), paper_id=None, title=None, authors=None,
        abstract=None, keywords=None, publisher_id=None, fee=None,
    )
    ui = ScriptedUI([])
    DesciAgentCLI(Settings(), api=_api(lambda r: httpx.Response(500)), ui=ui).cmd_upload(args)
    assert ui.lines[0][0] == "error"


def test_describe_connection_error():
    err = httpx.ConnectError("refused")
    assert "No response received" in describe_http_error(err)


def test_check_server():
    ok = DesciAgentCLI(Settings(), api=_api(lambda r: httpx.Response(200, json={"status": "ok"})), ui=ScriptedUI([]))
    assert ok.check_server()

    def down(request):
        raise httpx.ConnectError("refused", request=request)

    ui = ScriptedUI([])
    assert not DesciAgentCLI(Settings(), api=_api(down), ui=ui).check_server()
    assert ui.lines[0][0] == "warning"
