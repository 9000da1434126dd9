"""FastAPI application entry point."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from .routes import migrations, snapshots, retries, duplicates, quality, workflows

app = FastAPI(
    title="Enterprise Migration API",
    description="API for running data migrations with lineage, snapshots and retries",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(migrations.router, prefix="/api/migrations", tags=["migrations"])
app.include_router(snapshots.router, prefix="/api/snapshots", tags=["snapshots"])
app.include_router(retries.router, prefix="/api/retries", tags=["retries"])
app.include_router(duplicates.router, prefix="/api/duplicates", tags=["duplicates"])
app.include_router(quality.router, prefix="/api/quality", tags=["quality"])
app.include_router(workflows.router, prefix="/api/workflows", tags=["workflows"])


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}
