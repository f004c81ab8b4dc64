"""In-process stand-ins for external collaborators used across tests."""

from datetime import datetime
from typing import List, Optional

from api.channels.base import ChannelTransport, InboundMessage, TransportStatus
from database.repositories import OrganizationRepository
from database.session import session_scope
from llm.errors import TransportSendError
from llm.providers.base import LLMProvider, LLMResponse, LLMUsage
from retrieval.pinecone_client import VectorHit


async def seed_org(factory, name="Acme Support", slug="acme", settings=None) -> str:
    async with session_scope(factory) as session:
        org = await OrganizationRepository(session).create(name=name, slug=slug, settings=settings or {})
        return org.id


class FakeEmbedder:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[str] = []

    async def embed_text(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise ConnectionError("embedding backend down")
        return [0.1] * 8

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        return [await self.embed_text(t) for t in texts]


class FakeVectorStore:
    def __init__(self, hits: Optional[List[VectorHit]] = None, fail: bool = False):
        self.hits = hits or []
        self.fail = fail
        self.calls = []
        self.upserted = {}
        self.deleted = []

    async def search(self, org_id, embedding, top_k):
        self.calls.append((org_id, top_k))
        if self.fail:
            raise ConnectionError("vector store down")
        return list(self.hits[:top_k])

    async def upsert(self, org_id, vectors):
        if self.fail:
            raise ConnectionError("vector store down")
        self.upserted.setdefault(org_id, {}).update({v["id"]: v for v in vectors})
        return len(vectors)

    async def delete(self, org_id, ids):
        self.deleted.extend(ids)
        for vector_id in ids:
            self.upserted.get(org_id, {}).pop(vector_id, None)


class FakeLLM(LLMProvider):
    name = "fake"

    def __init__(self, reply: str = "", error: Optional[Exception] = None, confidence: Optional[float] = None):
        self.reply = reply
        self.error = error
        self.confidence = confidence
        self.requests = []

    async def chat(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        response = LLMResponse.from_text(self.reply, usage=LLMUsage(120, 30, 150))
        if self.confidence is not None:
            response.confidence = self.confidence
        return response

    async def health_check(self) -> bool:
        return True


class FakeTransport(ChannelTransport):
    def __init__(self, fail_send: bool = False, fail_start: bool = False):
        super().__init__()
        self.fail_send = fail_send
        self.fail_start = fail_start
        self.sent = []

    async def start(self):
        if self.fail_start:
            self._status = TransportStatus.ERROR
            raise ConnectionError("cannot reach provider")
        self._status = TransportStatus.READY

    async def stop(self):
        self._status = TransportStatus.DISCONNECTED

    async def send_message(self, to: str, text: str) -> None:
        self._require_ready()
        if self.fail_send:
            raise TransportSendError(f"send to {to} failed")
        self.sent.append((to, text))


def make_hit(hit_id, score, text="chunk", doc_id=None, title=None) -> VectorHit:
    metadata = {}
    if doc_id:
        metadata["doc_id"] = doc_id
    if title:
        metadata["title"] = title
    return VectorHit(id=hit_id, score=score, text=text, metadata=metadata)


def make_message(body="What are your opening hours?", sender="15551234567@c.us", msg_id="wamid.1") -> InboundMessage:
    return InboundMessage(
        id=msg_id,
        sender=sender,
        body=body,
        timestamp=int(datetime.now().timestamp()),
        sender_name="Dana",
    )
