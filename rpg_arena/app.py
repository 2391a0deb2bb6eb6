import logging

from fastapi import FastAPI

from rpg_arena.config import Settings, load_settings
from rpg_arena.llm import LLM
from rpg_arena.routes import router


def create_app(settings: Settings | None = None, llm: LLM | None = None) -> FastAPI:
    """Build the API app.

    `llm` overrides the HTTP client built from settings for every new game
    (tests pass a stub here).
    """
    resolved = settings or load_settings()
    logging.basicConfig(
        level=resolved.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="RPG Arena")
    app.state.settings = resolved
    app.state.llm = llm
    app.state.games = {}
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (reads settings from env / .env)
app = create_app()
