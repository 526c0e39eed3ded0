import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from backend.routes import router
from backend.sessions import SessionRegistry
from therapy_roleplay.llm import Generator

load_dotenv(Path(__file__).parent.parent / ".env")

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


def create_app(data_dir: Path | None = None, generator: Generator | None = None) -> FastAPI:
    """Build the API app. `generator` overrides the configured connection."""
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    registry = SessionRegistry(resolved, generator=generator)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await registry.shutdown()

    app = FastAPI(title="Therapy Roleplay", lifespan=lifespan)
    app.state.sessions = registry
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (uses DATA_DIR env var or default)
app = create_app()
