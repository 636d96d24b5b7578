import logging
import os
from pathlib import Path

# Load environment variables from .env file (for local development)
from dotenv import load_dotenv
env_path = Path(__file__).parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)-5.5s [%(name)s] %(message)s",
)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from database import engine, Base, SessionLocal
from routes import quotation_config, client_portal, quotations
from seed import seed_master_data


# Create all database tables (idempotent - safe fallback for fresh installs)
Base.metadata.create_all(bind=engine)


# Seed system master data on startup
def init_db():
    db = SessionLocal()
    try:
        seed_master_data(db)
    finally:
        db.close()
    print("[STARTUP] System space and component types ensured")

init_db()

app = FastAPI(
    title="Quotation Builder API",
    description="Build, version, share and approve interior design quotations",
    version="1.0.0"
)

# Get CORS origins from environment variable, with sensible defaults for local dev
default_origins = [
    "http://localhost:5173",  # Vite dev server
    "http://localhost:3000",  # Alternative dev port
    "http://127.0.0.1:5173",
    "http://127.0.0.1:3000",
]

cors_origins_env = os.getenv("CORS_ORIGINS", "")
if cors_origins_env:
    additional_origins = [origin.strip() for origin in cors_origins_env.split(",") if origin.strip()]
    allowed_origins = default_origins + additional_origins
else:
    allowed_origins = default_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Fixed-prefix routers go before /quotations/{quotation_id}
app.include_router(quotation_config.router)
app.include_router(client_portal.router)
app.include_router(quotations.router)


@app.get("/")
def root():
    """Root endpoint to verify API is running."""
    return {
        "message": "Quotation Builder API",
        "status": "running",
        "version": "1.0.0"
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), reload=True)
