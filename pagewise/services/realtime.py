"""
Document and ingestion events pushed to the owner's realtime channel.
"""

from typing import Optional

from ..core.redis import notify_owner

DOCUMENT_PROCESSING = "document.processing"
DOCUMENT_PROGRESS = "document.progress"
INGESTION_COMPLETED = "ingestion.completed"


async def document_processing(owner_id: str, doc_id: str, status: str, error: Optional[str] = None):
    data = {"document_id": doc_id, "status": status}
    if error:
        data["error"] = error
    await notify_owner(owner_id, DOCUMENT_PROCESSING, data)


async def document_progress(owner_id: str, doc_id: str, pages_done: int, page_count: int):
    await notify_owner(
        owner_id,
        DOCUMENT_PROGRESS,
        {"document_id": doc_id, "pages_done": pages_done, "page_count": page_count},
    )


async def ingestion_completed(owner_id: str, doc_id: str, report: dict):
    await notify_owner(owner_id, INGESTION_COMPLETED, {"document_id": doc_id, **report})
