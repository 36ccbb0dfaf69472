from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes.books import router as books_router
from api.routes.events import router as events_router
from api.routes.messages import router as messages_router
from api.routes.statistics import router as statistics_router


def create_app() -> FastAPI:
    app = FastAPI(title="Librarium API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(books_router)
    app.include_router(events_router)
    app.include_router(statistics_router)
    app.include_router(messages_router)

    @app.get("/healthz")
    def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
