"""
FastAPI application factory.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import get_settings
from .core.database import init_db, close_db
from .api.router import router

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Playbook",
        description="AI assistant for workflow documents",
        version="1.0.0",
        docs_url="/docs" if settings.env == "development" else None,
        redoc_url="/redoc" if settings.env == "development" else None,
    )

    # ── CORS ─────────────────────────────────────────────────────
    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins if origins != ["*"] else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Startup ──────────────────────────────────────────────────
    @app.on_event("startup")
    async def on_startup():
        logging.basicConfig(
            level=getattr(logging, settings.log_level.upper(), logging.INFO),
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
        logger.info("Starting Playbook (env=%s)", settings.env)

        # Create database tables
        await init_db()

        # Register tools, then validate the per-mode tool subsets
        from .tools.registry import init_tools
        from .pipeline.context_builder import get_mode_profile
        from .pipeline.context import ChatMode
        init_tools()
        for mode in ChatMode:
            get_mode_profile(mode)

        from .core.flags import get_flags
        flags = get_flags()
        logger.info(
            "Flags: header_auth=%s translation=%s embeddings=%s auto_reset=%s",
            flags.use_header_auth, flags.enable_translation,
            flags.enable_embeddings, flags.enable_auto_reset,
        )
        logger.info("Playbook is ready (model=%s, max_tool_rounds=%d)", settings.chat_model, settings.max_tool_rounds)

    # ── Shutdown ─────────────────────────────────────────────────
    @app.on_event("shutdown")
    async def on_shutdown():
        from .services import background
        from .services.llm import close_client
        await background.drain()
        await close_client()
        await close_db()
        logger.info("Playbook shut down")

    # ── Routes ───────────────────────────────────────────────────
    app.include_router(router)

    return app
