from talkledger.config import get_settings
from talkledger.db.repository import LedgerRepository
from talkledger.dedup import DedupGuard
from talkledger.dialogs.engine import DialogEngine
from talkledger.dialogs.store import InMemorySessionStore, PendingActionStore
from talkledger.ledger import LedgerService
from talkledger.llm.chat import ChatService
from talkledger.llm.client import CompletionClient
from talkledger.llm.parser import AiParser
from talkledger.llm.tools import ToolRegistry
from talkledger.parsing.text_parser import TextParser
from talkledger.pipeline import IntentPipeline
from talkledger.retrieval.embeddings import EmbeddingProvider
from talkledger.retrieval.ranker import Retriever

settings = get_settings()

repo = LedgerRepository(settings.db_path)
dedup = DedupGuard(ttl_seconds=settings.dedup_ttl_seconds)

client = CompletionClient(
    api_key=settings.openai_api_key,
    base_url=settings.openai_base_url,
    timeout=settings.llm_timeout,
    temperature=settings.llm_temperature,
)
embedder = EmbeddingProvider(
    api_key=settings.openai_api_key,
    base_url=settings.openai_base_url,
    model=settings.embedding_model,
    dim=settings.embedding_dim,
    timeout=settings.llm_timeout,
)
retriever = Retriever(repo, embedder, top_k=settings.retrieval_top_k)
ledger = LedgerService(repo, dedup, retriever, default_currency=settings.default_currency)

text_parser = TextParser()
ai_parser = AiParser(client, settings.llm_model, settings.llm_fallback_models)
tools = ToolRegistry(ledger)
chat = ChatService(client, settings.llm_model, settings.llm_fallback_models, retriever, tools, repo)

sessions = InMemorySessionStore(idle_timeout_seconds=settings.dialog_idle_timeout_seconds)
pending = PendingActionStore()
# The chat channel plugs its broadcaster in at startup
engine = DialogEngine(
    sessions,
    ledger,
    pending,
    default_currency=settings.default_currency,
    admin_user_ids=settings.admin_user_ids,
)
pipeline = IntentPipeline(engine, ledger, text_parser, ai_parser, chat)
