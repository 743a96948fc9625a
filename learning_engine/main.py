"""FastAPI entrypoint for the learning assessment and learner-risk engine."""

import logging

from fastapi import FastAPI

from learning_engine.config import get_settings
from learning_engine.database import create_db_and_tables
from learning_engine.routers import interventions as interventions_router_module
from learning_engine.routers import quiz as quiz_router_module

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Learning Engine",
    description="Quiz sessions, grading, learner risk signals and interventions",
    version="1.0.0",
)

app.include_router(quiz_router_module.router, tags=["quiz"])
app.include_router(interventions_router_module.router, prefix="/admin/lms", tags=["interventions"])


@app.get("/health")
def health():
    return {"status": "ok"}


@app.on_event("startup")
def on_startup():
    """Initialize database schema."""
    create_db_and_tables()
    logger.info("Database tables created/verified")
