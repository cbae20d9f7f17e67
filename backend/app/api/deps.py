from __future__ import annotations

from typing import AsyncGenerator

from backend.app.db.session import SessionLocal
from backend.app.db.store import DocumentStore, SqlDocumentStore
from backend.app.core.config import settings


async def get_store() -> AsyncGenerator[DocumentStore, None]:
    # Le store ouvre une session courte par appel ; rien à fermer ici
    yield SqlDocumentStore(SessionLocal, id_query_limit=settings.id_query_batch_size)
