import re

from loguru import logger
from pydantic import BaseModel

from talkledger.db.repository import LedgerStore
from talkledger.models.schemas import Note, Transaction
from talkledger.retrieval.embeddings import EmbeddingProvider, cosine, hashed_vector

LATIN_RE = re.compile(r"[a-z0-9]+")
CJK_RUN_RE = re.compile(r"[㐀-鿿豈-﫿]+")

# Whole-query substring bonus
PHRASE_BONUS = 3
# Stale or missing vectors re-embedded per ranking pass; the rest wait for the next query
REINDEX_LIMIT = 32


def tokenize(text: str) -> list[str]:
    """Latin words plus CJK runs as single characters and bigrams."""
    t = (text or "").lower()
    tokens = LATIN_RE.findall(t)
    for run in CJK_RUN_RE.findall(t):
        tokens.extend(run)
        tokens.extend(a + b for a, b in zip(run, run[1:]))
    # Dedupe, keep order
    return list(dict.fromkeys(tokens))


def lexical_score(query: str, tokens: list[str], candidate: str) -> float:
    haystack = (candidate or "").lower()
    score = sum(1 for tok in tokens if tok in haystack)
    q = (query or "").strip().lower()
    if len(q) >= 2 and q in haystack:
        score += PHRASE_BONUS
    return float(score)


def tx_text(tx: Transaction, category_name: str | None = None) -> str:
    parts = [tx.date, tx.type, category_name or tx.category_id, f"{tx.amount:g}", tx.currency, tx.note]
    return " ".join(p for p in parts if p)


def note_text(note: Note) -> str:
    return " ".join(p for p in [note.title, note.content, " ".join(note.tags)] if p)


class Hit(BaseModel):
    id: str
    text: str
    score: float


class RankedSet(BaseModel):
    lexical: list[Hit] = []
    vector: list[Hit] = []


class RetrievalContext(BaseModel):
    top_transactions: RankedSet = RankedSet()
    top_notes: RankedSet = RankedSet()

    def to_prompt(self) -> str:
        sections = []
        for title, ranked in (("transactions", self.top_transactions), ("notes", self.top_notes)):
            for label, hits in (("keyword match", ranked.lexical), ("similar meaning", ranked.vector)):
                if hits:
                    lines = "\n".join(f"- {h.text}" for h in hits)
                    sections.append(f"Relevant {title} ({label}):\n{lines}")
        if not sections:
            return "No matching ledger records."
        return "\n\n".join(sections)


class Retriever:
    """Keyword and vector top-K over a user's transactions and notes."""

    def __init__(self, store: LedgerStore, embedder: EmbeddingProvider, top_k: int = 5):
        self.store = store
        self.embedder = embedder
        self.top_k = top_k

    async def retrieve(self, user_id: str, query: str, k: int | None = None) -> RetrievalContext:
        k = k or self.top_k
        categories = {c.id: c.name for c in await self.store.get_categories(user_id)}
        txs = await self.store.get_transactions(user_id)
        notes = await self.store.get_notes(user_id)

        tx_docs = {tx.id: tx_text(tx, categories.get(tx.category_id)) for tx in txs if tx.id}
        note_docs = {n.id: note_text(n) for n in notes if n.id}

        tokens = tokenize(query)
        query_vec = await self.embedder.embed(query)

        return RetrievalContext(
            top_transactions=RankedSet(
                lexical=self._lexical(query, tokens, tx_docs, k),
                vector=await self._vector(user_id, "transaction", query_vec, tx_docs, k),
            ),
            top_notes=RankedSet(
                lexical=self._lexical(query, tokens, note_docs, k),
                vector=await self._vector(user_id, "note", query_vec, note_docs, k),
            ),
        )

    @staticmethod
    def _lexical(query: str, tokens: list[str], docs: dict[str, str], k: int) -> list[Hit]:
        hits = [Hit(id=doc_id, text=text, score=lexical_score(query, tokens, text)) for doc_id, text in docs.items()]
        hits = [h for h in hits if h.score > 0]
        return sorted(hits, key=lambda h: h.score, reverse=True)[:k]

    async def _vector(self, user_id: str, kind: str, query_vec, docs: dict[str, str], k: int) -> list[Hit]:
        stored = await self.store.get_embeddings(user_id, kind)
        local_mode = query_vec.model == self.embedder.fallback_model
        hits = []
        refreshed = 0
        for doc_id, text in docs.items():
            emb = stored.get(doc_id)
            if emb is not None and emb.model == query_vec.model:
                vector = emb.vector
            elif local_mode:
                vector = hashed_vector(text, self.embedder.dim)
            elif refreshed < REINDEX_LIMIT:
                # Never indexed, or indexed while the provider was down
                refreshed += 1
                emb = await self.embedder.embed(text)
                if emb.model != query_vec.model:
                    continue
                await self.store.upsert_embedding(user_id, kind, doc_id, emb)
                vector = emb.vector
            else:
                continue
            score = cosine(query_vec.vector, vector)
            if score > 0:
                hits.append(Hit(id=doc_id, text=text, score=round(score, 4)))
        return sorted(hits, key=lambda h: h.score, reverse=True)[:k]

    async def index_transaction(self, user_id: str, tx: Transaction, category_name: str | None = None) -> None:
        if not tx.id:
            return
        embedding = await self.embedder.embed(tx_text(tx, category_name))
        await self.store.upsert_embedding(user_id, "transaction", tx.id, embedding)
        logger.debug("Indexed transaction {} with {}", tx.id, embedding.model)

    async def index_note(self, user_id: str, note: Note) -> None:
        if not note.id:
            return
        embedding = await self.embedder.embed(note_text(note))
        await self.store.upsert_embedding(user_id, "note", note.id, embedding)
        logger.debug("Indexed note {} with {}", note.id, embedding.model)
