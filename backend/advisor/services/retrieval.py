"""Retrieval over the user's document corpus (emails, CRM contacts/notes, calendar)."""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from advisor.models.records import VectorDocument

logger = logging.getLogger(__name__)

CATEGORY_SOURCES: dict[str, tuple[str, ...]] = {
    "emails": ("email",),
    "calendar": ("calendar",),
    "contacts": ("hubspot_contact", "hubspot_note"),
}

_WORD_RE = re.compile(r"[a-z0-9@._-]{3,}")


@dataclass
class RelevantDocument:
    content: str
    source: str
    id: str | None = None
    title: str | None = None
    date: datetime | None = None


class BaseRetriever(ABC):
    @abstractmethod
    async def search(
        self,
        user_id: int,
        query: str,
        limit: int = 5,
        category: str | None = None,
    ) -> list[RelevantDocument]:
        """Return up to ``limit`` documents relevant to ``query``.

        ``category`` is one of ``emails``, ``calendar``, ``contacts`` or None/``all``.
        """
        ...


def _terms(text: str) -> set[str]:
    return set(_WORD_RE.findall(text.lower()))


class KeywordRetriever(BaseRetriever):
    """Ranks stored documents by how many query terms they contain."""

    def __init__(self, engine: Engine):
        self._engine = engine

    async def search(
        self,
        user_id: int,
        query: str,
        limit: int = 5,
        category: str | None = None,
    ) -> list[RelevantDocument]:
        if len(query.strip()) < 3:
            return []
        terms = _terms(query)
        if not terms:
            return []

        stmt = select(VectorDocument).where(VectorDocument.user_id == user_id)
        sources = CATEGORY_SOURCES.get(category or "all")
        if sources:
            stmt = stmt.where(VectorDocument.source.in_(sources))

        with Session(self._engine) as session:
            docs = session.exec(stmt).all()

        scored = []
        for doc in docs:
            haystack = _terms(f"{doc.title or ''} {doc.content}")
            score = len(terms & haystack)
            if score:
                scored.append((score, doc.date or doc.created_at, doc))

        scored.sort(key=lambda item: (item[0], item[1]), reverse=True)
        logger.debug(f"Retrieval for '{query}' matched {len(scored)} documents")

        return [
            RelevantDocument(
                content=doc.content,
                source=doc.source,
                id=doc.source_id,
                title=doc.title,
                date=doc.date,
            )
            for _, _, doc in scored[:limit]
        ]
