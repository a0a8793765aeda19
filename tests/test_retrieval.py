import numpy as np
import pytest

from talkledger.models.schemas import Embedding, Note, Transaction
from talkledger.retrieval.embeddings import EmbeddingProvider, cosine, hashed_vector
from talkledger.retrieval.ranker import (
    RankedSet,
    RetrievalContext,
    Retriever,
    lexical_score,
    tokenize,
    tx_text,
)


@pytest.fixture
def retriever(repo):
    return Retriever(repo, EmbeddingProvider(), top_k=5)


async def seed(repo):
    coffee = await repo.add_transaction(
        "u1", Transaction(date="2025-10-14", category_id="food", amount=120, note="咖啡 latte")
    )
    taxi = await repo.add_transaction(
        "u1", Transaction(date="2025-10-15", category_id="transport", amount=450, note="計程車")
    )
    return coffee, taxi


def test_tokenize_mixes_words_chars_and_bigrams():
    assert tokenize("咖啡 Coffee") == ["coffee", "咖", "啡", "咖啡"]
    assert tokenize("") == []


def test_lexical_score_rewards_whole_phrase():
    tokens = tokenize("咖啡")
    assert lexical_score("咖啡", tokens, "昨天 咖啡 120") == 6
    assert lexical_score("咖啡", tokens, "計程車") == 0


def test_hashed_vector_is_normalized_and_deterministic():
    v = hashed_vector("午餐 咖啡", 64)
    assert v.shape == (64,)
    assert np.linalg.norm(v) == pytest.approx(1.0)
    assert np.array_equal(v, hashed_vector("午餐 咖啡", 64))
    assert not hashed_vector("", 64).any()


def test_cosine():
    assert cosine([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine([1.0, 0.0], [0.0, 1.0]) == 0.0
    assert cosine([1.0], [1.0, 0.0]) == 0.0
    assert cosine([0.0, 0.0], [0.0, 0.0]) == 0.0


async def test_offline_embedding_uses_hash_model():
    embedder = EmbeddingProvider(dim=32)
    embedding = await embedder.embed("coffee")
    assert not embedder.remote
    assert embedding.model == "local-hash-32"
    assert len(embedding.vector) == 32


async def test_retrieve_keyword_and_vector_matches(repo, retriever):
    coffee, taxi = await seed(repo)

    context = await retriever.retrieve("u1", "咖啡")

    assert [h.id for h in context.top_transactions.lexical] == [coffee.id]
    assert context.top_transactions.vector[0].id == coffee.id
    assert "餐飲" in context.top_transactions.lexical[0].text
    assert "Relevant transactions (keyword match)" in context.to_prompt()


async def test_vectors_from_another_model_are_recomputed_offline(repo, retriever):
    coffee, _ = await seed(repo)
    await repo.upsert_embedding("u1", "transaction", coffee.id, Embedding(model="text-embedding-3-small", vector=[1.0, 0.0]))

    context = await retriever.retrieve("u1", "咖啡")

    assert coffee.id in [h.id for h in context.top_transactions.vector]


async def test_retrieve_respects_k(repo, retriever):
    for amount in (10, 20, 30):
        await repo.add_transaction("u1", Transaction(date="2025-10-14", category_id="food", amount=amount, note="咖啡"))

    context = await retriever.retrieve("u1", "咖啡", k=2)

    assert len(context.top_transactions.lexical) == 2
    assert len(context.top_transactions.vector) == 2


async def test_notes_are_retrieved(repo, retriever):
    note = await repo.add_note("u1", Note(title="milk", content="buy milk on friday", tags=["home"]))

    context = await retriever.retrieve("u1", "milk")

    assert [h.id for h in context.top_notes.lexical] == [note.id]
    assert "Relevant notes (keyword match)" in context.to_prompt()


async def test_index_transaction_stores_embedding(repo, retriever):
    coffee, _ = await seed(repo)

    await retriever.index_transaction("u1", coffee, "餐飲")

    stored = await repo.get_embeddings("u1", "transaction")
    assert stored[coffee.id].model == "local-hash-256"
    assert stored[coffee.id].vector == pytest.approx(hashed_vector(tx_text(coffee, "餐飲")).tolist())


def test_empty_context_prompt():
    assert RetrievalContext().to_prompt() == "No matching ledger records."
    assert RetrievalContext(top_notes=RankedSet()).to_prompt() == "No matching ledger records."


class FlakyEmbedder(EmbeddingProvider):
    """Remote provider that falls back to hashed vectors while `down` is set."""

    def __init__(self):
        super().__init__(dim=8)
        self.down = True
        self.calls = 0

    async def embed(self, text):
        self.calls += 1
        if self.down:
            return self.embed_local(text)
        return Embedding(model="remote-test", vector=[1.0] + [0.0] * 7)


async def test_vectors_written_while_provider_was_down_are_refreshed(repo):
    embedder = FlakyEmbedder()
    retriever = Retriever(repo, embedder, top_k=5)
    coffee, taxi = await seed(repo)
    await retriever.index_transaction("u1", coffee, "餐飲")
    assert (await repo.get_embeddings("u1", "transaction"))[coffee.id].model == "local-hash-8"

    embedder.down = False
    context = await retriever.retrieve("u1", "咖啡 latte")

    assert {h.id for h in context.top_transactions.vector} == {coffee.id, taxi.id}
    stored = await repo.get_embeddings("u1", "transaction")
    assert stored[coffee.id].model == "remote-test"
    assert stored[taxi.id].model == "remote-test"

    calls = embedder.calls
    await retriever.retrieve("u1", "咖啡 latte")
    assert embedder.calls == calls + 1
