"""
Retrieval-augmented answering built on eventflow.

The chat backend, vector store and document store are collaborators the
steps call into; the engine never looks inside the payloads. In-memory
fakes stand in for real providers so the example runs offline:

    python examples/rag_workflow.py "what do llamas eat?"
"""
import asyncio
import sys
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Protocol, Sequence

from eventflow import Context, ContextParams, EventKind, StartEvent, StopEvent, define_workflow
from eventflow.monitoring import configure_logging


class ChatBackend(Protocol):
    async def chat(self, messages: Sequence[Dict[str, str]]) -> str: ...

    def stream_chat(self, messages: Sequence[Dict[str, str]]) -> AsyncIterator[str]: ...


class VectorStore(Protocol):
    async def query(self, embedding: Sequence[float], top_k: int) -> List[str]: ...


class DocumentStore(Protocol):
    async def upsert(self, doc_id: str, text: str) -> None: ...

    async def delete(self, doc_id: str) -> None: ...

    async def get(self, doc_id: str) -> str: ...


@dataclass
class InMemoryDocumentStore:
    documents: Dict[str, str] = field(default_factory=dict)

    async def upsert(self, doc_id: str, text: str) -> None:
        self.documents[doc_id] = text

    async def delete(self, doc_id: str) -> None:
        self.documents.pop(doc_id, None)

    async def get(self, doc_id: str) -> str:
        return self.documents[doc_id]


@dataclass
class KeywordVectorStore:
    """Ranks documents by shared words; the 'embedding' is a bag of word hashes."""

    store: InMemoryDocumentStore

    async def query(self, embedding: Sequence[float], top_k: int) -> List[str]:
        wanted = set(embedding)
        scored = []
        for doc_id, text in self.store.documents.items():
            words = {float(hash(word) % 1000) for word in text.lower().split()}
            scored.append((len(wanted & words), doc_id))
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [doc_id for score, doc_id in scored[:top_k] if score > 0]


class EchoChat:
    async def chat(self, messages: Sequence[Dict[str, str]]) -> str:
        await asyncio.sleep(0.01)
        return f"Based on the context: {messages[-1]['content']}"

    async def stream_chat(self, messages: Sequence[Dict[str, str]]) -> AsyncIterator[str]:
        for token in (await self.chat(messages)).split():
            yield token + " "


def embed(text: str) -> List[float]:
    return [float(hash(word) % 1000) for word in text.lower().split()]


class RagContext(Context):
    """Context giving steps access to the collaborators."""

    def __init__(self, params: ContextParams) -> None:
        super().__init__(params)
        self.docstore = DOCSTORE
        self.vectors: VectorStore = KeywordVectorStore(DOCSTORE)
        self.llm: ChatBackend = EchoChat()


DOCSTORE = InMemoryDocumentStore()

Retrieved = EventKind("retrieved")
Keywords = EventKind("keywords")
Drafted = EventKind("drafted")

workflow = define_workflow("rag", timeout=10)


@workflow.step(StartEvent, outputs=Retrieved)
async def retrieve(ctx: RagContext, event):
    doc_ids = await ctx.vectors.query(embed(event.payload), top_k=2)
    texts = [await ctx.docstore.get(doc_id) for doc_id in doc_ids]
    return Retrieved({"question": event.payload, "texts": texts})


@workflow.step(StartEvent, outputs=Keywords)
def keywords(ctx, event):
    return Keywords(sorted({word.strip("?!.,") for word in event.payload.split() if len(word) > 3}))


@workflow.step(Retrieved, outputs=Drafted)
async def draft(ctx: RagContext, event):
    context_block = "\n".join(event.payload["texts"]) or "(nothing found)"
    answer = await ctx.llm.chat(
        [
            {"role": "system", "content": "Answer from the context only."},
            {"role": "user", "content": f"{context_block}\n\nQ: {event.payload['question']}"},
        ]
    )
    return Drafted(answer)


@workflow.step(Drafted, outputs=StopEvent)
async def finish(ctx, event):
    return StopEvent({"answer": event.payload, "cycles": ctx.cycle})


async def main(question: str) -> None:
    await DOCSTORE.upsert("llama-diet", "llamas eat grass and hay")
    await DOCSTORE.upsert("llama-home", "llamas live in the andes")

    handle = workflow.run(question, verbose=True, context_factory=RagContext)
    async for event in handle.stream_events():
        print(f"dispatched {event.kind}")
    print(await handle)


if __name__ == "__main__":
    configure_logging("INFO")
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "what do llamas eat?"))
