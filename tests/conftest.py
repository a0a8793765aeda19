import os
import tempfile
from datetime import date
from types import SimpleNamespace

# Keep the app singletons offline and off the working directory before anything imports them
os.environ["DB_PATH"] = os.path.join(tempfile.mkdtemp(prefix="talkledger-"), "ledger.json")
os.environ["OPENAI_API_KEY"] = ""
os.environ["TELEGRAM_BOT_TOKEN"] = ""

import pytest

from talkledger import background
from talkledger.db.repository import LedgerRepository
from talkledger.dedup import DedupGuard
from talkledger.dialogs.engine import DialogEngine
from talkledger.dialogs.store import InMemorySessionStore, PendingActionStore
from talkledger.ledger import LedgerService
from talkledger.llm.chat import ChatService
from talkledger.llm.parser import AiParser
from talkledger.llm.tools import ToolRegistry
from talkledger.parsing.text_parser import TextParser
from talkledger.pipeline import IntentPipeline
from talkledger.retrieval.embeddings import EmbeddingProvider
from talkledger.retrieval.ranker import Retriever
from tests.fakes import FakeCompletionClient

TODAY = date(2025, 10, 15)


def build_services(repo, client, admin_user_ids=None, broadcaster=None, ttl=120.0):
    clock = lambda: TODAY  # noqa: E731
    dedup = DedupGuard(ttl_seconds=ttl)
    embedder = EmbeddingProvider()
    retriever = Retriever(repo, embedder, top_k=5)
    ledger = LedgerService(repo, dedup, retriever)
    text_parser = TextParser()
    ai_parser = AiParser(client, "m1", ["m2"])
    tools = ToolRegistry(ledger, clock=clock)
    chat = ChatService(client, "m1", ["m2"], retriever, tools, repo, clock=clock)
    sessions = InMemorySessionStore()
    pending = PendingActionStore()
    engine = DialogEngine(
        sessions,
        ledger,
        pending,
        admin_user_ids=admin_user_ids,
        broadcaster=broadcaster,
        clock=clock,
    )
    pipeline = IntentPipeline(engine, ledger, text_parser, ai_parser, chat, clock=clock)
    return SimpleNamespace(
        repo=repo,
        client=client,
        dedup=dedup,
        retriever=retriever,
        ledger=ledger,
        tools=tools,
        chat=chat,
        sessions=sessions,
        pending=pending,
        engine=engine,
        pipeline=pipeline,
    )


@pytest.fixture(autouse=True)
def _reset_background_failures():
    background.failures.clear()
    yield


@pytest.fixture
def repo():
    return LedgerRepository.in_memory()


@pytest.fixture
def offline_client():
    return FakeCompletionClient(available=False)


@pytest.fixture
def services(repo, offline_client):
    return build_services(repo, offline_client)


@pytest.fixture
def make_services(repo):
    """Builder for tests that need a scripted provider or admin wiring."""
    return lambda client, **kwargs: build_services(repo, client, **kwargs)
