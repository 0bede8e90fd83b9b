import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv

# Configure Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger(__name__)

# Settings are read at import time, so .env has to be loaded first.
env_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env")
load_dotenv(dotenv_path=env_path, override=True)

from fastapi import FastAPI  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from sqlalchemy import text  # noqa: E402

from finance_module import init_finance_module, router as finance_router  # noqa: E402
from finance_module.database import engine  # noqa: E402


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        logger.info("Initializing finance module...")
        init_finance_module()
        logger.info("Finance module initialized.")
    except Exception as e:
        logger.error(f"Startup finance module error: {e}")
    yield
    logger.info("Shutting down...")


app = FastAPI(title="Finance Reconciliation API", lifespan=lifespan)

origins = [
    "http://localhost:8000",
    "http://127.0.0.1:8000",
    "http://localhost:5173",
]
extra_origins = os.getenv("FINANCE_CORS_ORIGINS", "")
origins.extend(o.strip() for o in extra_origins.split(",") if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(finance_router)


@app.get("/api/health")
def health_check():
    """Health check endpoint to verify the API and its database are reachable"""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)}"

    return {
        "status": "healthy",
        "message": "Finance API is running",
        "database": db_status,
        "dialect": engine.dialect.name,
    }


if __name__ == "__main__":
    import uvicorn

    reload_enabled = os.getenv("BACKEND_RELOAD", "false").lower() == "true"
    backend_host = os.getenv("BACKEND_HOST", "127.0.0.1")
    backend_port = int(os.getenv("BACKEND_PORT", "8000"))
    uvicorn.run("app:app", host=backend_host, port=backend_port, reload=reload_enabled)
