"""
main.py

Entry point for the Teaching Project Lifecycle API.

Wires the in-memory infrastructure into the FastAPI app and starts uvicorn.

Usage
-----
    # Option 1: run directly (host/port from PROJECTS_API_HOST / PROJECTS_API_PORT)
    python main.py

    # Option 2: run via uvicorn CLI (recommended for development)
    uvicorn main:app --reload --port 8000

Once running, open your browser at:
    http://localhost:8000/docs      ← Swagger UI
    http://localhost:8000/health    ← liveness check

Quick-start walkthrough (demo catalog is seeded in dev)
-------------------------------------------------------
Send X-Actor-Id: 00000000-0000-0000-0000-000000000002 (teacher "Ana Torres").

1.  POST /api/v1/projects                          create a project in term 2024-1
2.  POST /api/v1/projects/{id}/attachments         register a "formal_document"
3.  POST /api/v1/projects/{id}/continuations       continue it into term 2024-2
4.  POST /api/v1/projects/{id}/status              {"status": "completed"}; the
                                                   successor completes in cascade
5.  GET  /api/v1/projects/{id}/history             audit trail, newest first
"""

import uvicorn

from api import app, get_uow, settings
from infrastructure import InMemoryUnitOfWork


# ---------------------------------------------------------------------------
# Wire the concrete Unit of Work into the FastAPI dependency system.
# To swap databases, replace InMemoryUnitOfWork with your SQL implementation.
# ---------------------------------------------------------------------------

app.dependency_overrides[get_uow] = lambda: InMemoryUnitOfWork()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_dev,
        log_level=settings.log_level.lower(),
    )
