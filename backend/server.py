"""
Document Store API server

Builds the FastAPI application. Collaborators (database, gateway client,
catalog) are created at startup from Settings, or injected by the caller.

Run:
    python -m server
    uvicorn server:create_app --factory --port 3000
"""
from fastapi import FastAPI, APIRouter
from starlette.middleware.cors import CORSMiddleware
from datetime import datetime, timezone
from typing import Optional
import logging

import uvicorn

from database import connect_database
from routes.auth import auth_router, user_router
from routes.documents import documents_router, download_router
from token_wallet.catalog import DocumentCatalog
from token_wallet.db_init import apply_schema
from token_wallet.mpesa_service import MpesaClient
from token_wallet.routes import token_wallet_router
from utils.environment import Settings, load_settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    database=None,
    gateway=None,
    catalog: Optional[DocumentCatalog] = None
) -> FastAPI:
    settings = settings or load_settings()

    app = FastAPI(title="Document Store - Token Downloads")
    app.state.settings = settings
    app.state.mongo = None
    app.state.db = database
    app.state.gateway = gateway or MpesaClient(settings)
    app.state.catalog = catalog or DocumentCatalog.from_settings(settings)

    api_router = APIRouter(prefix="/api")

    @api_router.get("/health")
    async def health():
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    api_router.include_router(auth_router, prefix="/auth")
    api_router.include_router(user_router, prefix="/user")
    api_router.include_router(token_wallet_router)
    api_router.include_router(documents_router)

    app.include_router(api_router)
    app.include_router(download_router)

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def startup():
        logger.info(f"Starting with settings: {settings.describe()}")

        if app.state.db is not None:
            return

        # Fail fast if database is unavailable
        mongo = connect_database(settings)
        db_ok, db_error = await mongo.check_connection()
        if not db_ok:
            mongo.close()
            logger.critical(f"Database connection failed on startup: {db_error}")
            raise RuntimeError(
                f"Cannot start application - database connection failed: {db_error}")

        for line in await apply_schema(mongo.db):
            logger.info(line)

        app.state.mongo = mongo
        app.state.db = mongo.db
        logger.info(f"M-Pesa environment: {settings.mpesa_env}")

    @app.on_event("shutdown")
    async def shutdown_db_client():
        if app.state.mongo is not None:
            app.state.mongo.close()
            app.state.mongo = None
            app.state.db = None

    return app


def main():
    settings = load_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
