from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from desci.api.chat import router as chat_router
from desci.api.papers import router as papers_router
from desci.core.app_state import AppState, build_app_state
from desci.core.config import settings
from desci.middleware.error import exception_middleware
from desci.utils.logger import logger


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    owned = getattr(app.state, "desci", None) is None
    if owned:
        # Any failure here aborts startup and the server exits
        app.state.desci = await build_app_state(settings)
        logger.info(
            f"DeSci Platform running in {settings.ENVIRONMENT} mode, "
            f"main registry topic ID: {app.state.desci.main_topic_id}"
        )

    yield

    if owned:
        await app.state.desci.close()
        logger.info("DeSci Platform shut down")


def create_app(state: Optional[AppState] = None) -> FastAPI:
    app = FastAPI(title="DeSci Platform API", lifespan=lifespan)
    if state is not None:
        app.state.desci = state

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(exception_middleware)

    app.include_router(papers_router, prefix="/api/papers", tags=["papers"])
    app.include_router(chat_router, prefix="/api/chat", tags=["chat"])

    @app.get("/health")
    def health():
        return {"status": "ok", "message": "DeSci Platform API is running"}

    return app


app = create_app()


def run() -> None:
    uvicorn.run("desci.main:app", host="0.0.0.0", port=settings.PORT)


if __name__ == "__main__":
    run()
