# main.py - Serveur du moteur de devis
import uvicorn
import logging
import os
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI

from core.settings import get_settings
from db.session import get_session_factory
from routes.routes_quotations import router as quotations_router

if sys.platform == "win32":
    os.environ["PYTHONIOENCODING"] = "utf-8"

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Gestionnaire de cycle de vie de l'application"""
    logger.info("=" * 50)
    logger.info(f"DEMARRAGE - {settings.app_name}")
    logger.info("=" * 50)

    # Création des tables si absentes
    get_session_factory()
    logger.info(f"Base de données prête: {settings.database_url}")
    logger.info(f"Stockage des bons de commande: {settings.attachment_storage_dir}")

    yield

    logger.info(f"Arrêt - {settings.app_name}")


app = FastAPI(
    title=settings.app_name,
    description="Moteur de devis : totaux, plans de paiement, numérotation, cycle de vie et document imprimable",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(quotations_router)


@app.get("/health")
async def health():
    return {"status": "ok", "service": settings.app_name}


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8200")),
        reload=False
    )
