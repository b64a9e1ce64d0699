from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from database import Database
from routes import generate, usage, webhooks
from services.content_service import ContentService
from services.credential_pool import CredentialPool
from services.generation_client import GenerationClient, DEFAULT_MODEL
from services.metering_gate import MeteringGate
from services.usage_ledger import UsageLedger

import os
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Product Copy API")
    database = Database()
    await database.connect()

    ledger = UsageLedger(database.get_db())
    gate = MeteringGate(ledger)
    pool = CredentialPool()

    # Key check: log count only, never key material
    key_count = len(pool.load())
    if key_count == 0:
        logger.error("No valid GEMINI_API_KEY configured. Generation requests will fail.")
    else:
        logger.info(f"Gemini keys loaded: {key_count} (model={DEFAULT_MODEL})")
    logger.info(f"BILLING_MODE = {gate.mode.value}, unit price = {gate.unit_price}")

    app.state.database = database
    app.state.usage_ledger = ledger
    app.state.content_service = ContentService(gate, GenerationClient(pool))

    yield

    # Shutdown
    logger.info("Shutting down Product Copy API")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title="Product Copy API",
    description="AI product descriptions and SEO metadata with metered free credits",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(generate.router)
app.include_router(usage.router)
app.include_router(webhooks.router)


@app.get("/api/ping")
async def ping():
    return {"status": "ok"}

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development")
    }


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
