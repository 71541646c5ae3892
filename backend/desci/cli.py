"""Command-line research agent.

Talks to the platform's HTTP API only (``SERVER_URL``), except ``topic-send``
which submits messages straight to a ledger topic.
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

import httpx

from desci.console import ConsoleUI
from desci.core.config import Settings
from desci.services.uploads import content_type_for

UPLOAD_TIMEOUT = 60.0


class ApiClient:
    """Thin httpx wrapper over the platform endpoints."""

    def __init__(self, base_url: str, timeout: float = 30.0, transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url
        self._http = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._http.close()

    def _json(self, response: httpx.Response):
        response.raise_for_status()
        return response.json()

    def health(self, timeout: float = 5.0) -> dict:
        return self._json(self._http.get("/health", timeout=timeout))

    def chat(self, message: str) -> dict:
        return self._json(self._http.post("/api/chat", json={"message": message}))

    def create_session(self) -> dict:
        return self._json(self._http.post("/api/chat/sessions"))

    def send(self, session_id: str, message: str) -> dict:
        return self._json(self._http.post(f"/api/chat/sessions/{session_id}/messages", json={"message": message}))

    def upload(self, file_path: Path, metadata: dict) -> dict:
        # List values are sent as repeated multipart fields
        data = {
            "paperId": metadata["paperId"],
            "title": metadata["title"],
            "abstract": metadata["abstract"],
            "publisherId": metadata["publisherId"],
            "fee": str(metadata["fee"]),
            "authors[]": metadata["authors"],
            "keywords[]": metadata["keywords"],
        }

        with open(file_path, "rb") as f:
            files = {"file": (file_path.name, f, content_type_for(file_path.name))}
            response = self._http.post("/api/papers/upload", data=data, files=files, timeout=UPLOAD_TIMEOUT)
        return self._json(response)


def _split(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def describe_http_error(exc: httpx.HTTPError) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            detail = exc.response.json().get("detail")
        except ValueError:
            detail = exc.response.text
        return f"Server responded {exc.response.status_code}: {detail}"
    return f"No response received ({exc}). The server might be down or the connection timed out."


class DesciAgentCLI:
    """Interactive agent for the DeSci platform."""

    def __init__(self, settings: Optional[Settings] = None, api: Optional[ApiClient] = None, ui: Optional[ConsoleUI] = None):
        self.settings = settings or Settings()
        self.ui = ui or ConsoleUI()
        self.api = api or ApiClient(self.settings.SERVER_URL)

    def check_server(self) -> bool:
        try:
            self.api.health()
        except httpx.HTTPError as e:
            self.ui.warning(f"Could not connect to server at {self.api.base_url}")
            self.ui.warning("Make sure the server is running before using upload or chat features.")
            self.ui.info(f"Error details: {e}")
            return False
        self.ui.success("Connected to server successfully.")
        return True

    def cmd_chat(self) -> None:
        """Quick question/answer over /api/chat."""
        self.ui.info("Type 'exit' to leave the chat.")
        while True:
            message = self.ui.ask("You")
            if message.lower() == "exit":
                self.ui.info("Goodbye!")
                return
            if not message.strip():
                continue

            try:
                data = self.api.chat(message)
            except httpx.HTTPError as e:
                self.ui.error(f"Chat error: {describe_http_error(e)}")
                if not self.ui.confirm("Would you like to try again?"):
                    return
                continue

            self.ui.reply("Server", data.get("reply", ""))
            if data.get("papers"):
                self.ui.display_papers(data["papers"], title="Matched papers")

    def cmd_research(self) -> None:
        """Session loop: search, quote, pay, read findings."""
        try:
            session = self.api.create_session()
        except httpx.HTTPError as e:
            self.ui.error(f"Could not start a research session: {describe_http_error(e)}")
            return

        session_id = session["sessionId"]
        self.ui.rule("DeSci Research Agent")
        self.ui.info("Ask research questions and I'll find relevant papers and provide insights.")
        self.ui.info("Commands: /search [query], /quote, /pay, /help, /exit")
        self.ui.rule()

        while True:
            text = self.ui.ask("Ask a research question (or use a command)")
            if text.lower() == "/exit":
                self.ui.info("Thank you for using the DeSci Research Agent. Goodbye!")
                return

            try:
                turn = self.api.send(session_id, text)
            except httpx.HTTPError as e:
                self.ui.error(describe_http_error(e))
                continue

            self.ui.reply(f"Agent [{turn.get('stage')}]", turn.get("reply", ""))
            if text.lower() == "/quote" and turn.get("quote"):
                self.ui.display_quote(turn["quote"])

    def cmd_upload(self, args: argparse.Namespace) -> None:
        file_path = args.file or self.ui.ask("Path to the paper file (pdf, docx, txt, etc.)")
        path = Path(file_path).expanduser()
        if not path.is_file():
            self.ui.error(f"File not found: {path}")
            return

        metadata = {
            "paperId": args.paper_id or self.ui.ask("Paper ID"),
            "title": args.title or self.ui.ask("Title of the paper"),
            "authors": _split(args.authors or self.ui.ask("Authors (comma-separated)")),
            "abstract": args.abstract or self.ui.ask("Abstract"),
            "keywords": _split(args.keywords if args.keywords is not None else self.ui.ask("Keywords (comma-separated)", default="")),
            "publisherId": args.publisher_id or self.ui.ask("Publisher ID"),
            "fee": args.fee if args.fee is not None else self.ui.ask_float("Access fee (numeric)", default=10.0),
        }

        self.ui.info(f'Uploading paper "{metadata["title"]}" from {path}...')
        try:
            result = self.api.upload(path, metadata)
        except httpx.HTTPError as e:
            self.ui.error(f"Upload failed: {describe_http_error(e)}")
            return

        paper = result.get("paper", {})
        self.ui.success(
            f"Upload successful: {paper.get('paperId')} (content topic {paper.get('contentTopicId')})"
        )

    def cmd_topic_send(self, topic_id: str) -> None:
        asyncio.run(self._topic_send(topic_id))

    async def _topic_send(self, topic_id: str) -> None:
        from desci.ledger.hedera import HederaLedger

        self.ui.info("Initializing Hedera client...")
        ledger = await HederaLedger.connect(self.settings)
        self.ui.info('Message submission loop started. Type "exit" to quit.')
        try:
            while True:
                message = await asyncio.to_thread(self.ui.ask, "Enter your message")
                if message.lower() == "exit":
                    self.ui.info("Exiting message submission loop...")
                    return
                if not message.strip():
                    self.ui.warning("Message cannot be empty. Please try again.")
                    continue
                status = await ledger.submit_message(topic_id, message)
                self.ui.success(f'Message "{message}" submitted to topic {topic_id} ({status})')
        finally:
            await ledger.close()

    def interactive(self) -> None:
        """Menu loop used when no subcommand is given."""
        while True:
            action = self.ui.choose("What would you like to do?", ["research", "chat", "upload", "exit"])
            if action == "research":
                self.cmd_research()
            elif action == "chat":
                self.cmd_chat()
            elif action == "upload":
                self.cmd_upload(argparse.Namespace(
                    file=None, paper_id=None, title=None, authors=None,
                    abstract=None, keywords=None, publisher_id=None, fee=None,
                ))
            else:
                self.ui.info("Exiting agent.")
                return


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="desci-agent", description="DeSci platform research agent")
    parser.add_argument("--server-url", help="Platform API base URL (default: SERVER_URL)")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("chat", help="Ask questions over the quick chat endpoint")
    sub.add_parser("research", help="Search, quote and pay for papers in a research session")

    up = sub.add_parser("upload", help="Upload a paper file with metadata")
    up.add_argument("--file")
    up.add_argument("--paper-id")
    up.add_argument("--title")
    up.add_argument("--authors", help="Comma-separated")
    up.add_argument("--abstract")
    up.add_argument("--keywords", help="Comma-separated")
    up.add_argument("--publisher-id")
    up.add_argument("--fee", type=float)

    ts = sub.add_parser("topic-send", help="Submit messages to a ledger topic")
    ts.add_argument("topic_id")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    if args.server_url:
        settings.SERVER_URL = args.server_url

    cli = DesciAgentCLI(settings)
    cli.ui.info(f"DeSci Platform Agent - connecting to {settings.SERVER_URL}")

    try:
        if args.command == "topic-send":
            cli.cmd_topic_send(args.topic_id)
            return 0

        cli.check_server()
        if args.command == "chat":
            cli.cmd_chat()
        elif args.command == "research":
            cli.cmd_research()
        elif args.command == "upload":
            cli.cmd_upload(args)
        else:
            cli.interactive()
    except KeyboardInterrupt:
        cli.ui.info("\nInterrupted.")
    finally:
        cli.api.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
