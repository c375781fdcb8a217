from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    load_dotenv("local.env")

    from settings import get_settings

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    from endpoints.document_endpoints import document_store_error_handler, router as document_router
    from persistence.errors import DocumentStoreError

    app = FastAPI(title="Campaign document store")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DocumentStoreError, document_store_error_handler)

    @app.get("/healthz")
    async def healthz():
        return JSONResponse({"ok": True, "data_dir": str(settings.data_dir)})

    app.include_router(document_router)

    logger.info("Document store serving from %s", settings.data_dir)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app:app", host="127.0.0.1", port=8000)
