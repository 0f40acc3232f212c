"""Grain Settlement Quality Engine - Main Application."""

import logging.config

from fastapi import FastAPI

from app.api.routes import quality, settlements
from app.core.config import settings
from app.core.database import Base, engine
from app.core.logging import setup_logging
from app.core.logging_config import LOGGING_CONFIG

# Configure logging before anything else
logging.config.dictConfig(LOGGING_CONFIG)
logger = setup_logging(settings.log_level)

# Create all tables on startup
logger.info("Creating database tables...")
Base.metadata.create_all(bind=engine)
logger.info("Database tables ready")

# -- OpenAPI tag metadata for Swagger grouping --
tags_metadata = [
    {
        "name": "Health",
        "description": "Service health and readiness checks.",
    },
    {
        "name": "Settlements",
        "description": (
            "Register settlements (liquidaciones) with their CTG entries, "
            "recalculate quality factors and list discrepancies against the "
            "factors printed on the documents."
        ),
    },
    {
        "name": "Quality",
        "description": (
            "Attach laboratory analyses to CTG entries, preview factor "
            "calculations and query results outside the trade standard."
        ),
    },
]


app = FastAPI(
    title="Grain Settlement Quality Engine",
    description=(
        "## Grain Quality Factor API\n\n"
        "Computes the commercial factor of grain lots from their laboratory "
        "analysis (humidity, foreign matter, damaged grains, protein, ...) "
        "using per-grain rule tables, and reconciles it against the factor "
        "recorded on each settlement.\n\n"
        "### Supported Grains\n"
        "| Grain | Base humidity | Norm |\n"
        "|-------|---------------|------|\n"
        "| **WHEAT** (trigo) | 14.0 % | XX |\n"
        "| **CORN** (maíz) | 14.5 % | XII |\n"
        "| **SOYBEAN** (soja) | 13.5 % | XVII |\n"
        "| **SORGHUM** (sorgo) | 15.0 % | XVIII |\n"
        "| **SUNFLOWER** (girasol) | 11.0 % | IX |\n\n"
        "### Discrepancy Status\n"
        "- `OK` - calculated factor within 0.5 points of the original\n"
        "- `WARNING` - more than 0.5 points apart\n"
        "- `CRITICAL` - more than 2.0 points apart\n\n"
        "All tenant-scoped routes expect an `X-Tenant-Id` header.\n"
    ),
    version="1.0.0",
    openapi_tags=tags_metadata,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(
    settlements.router, prefix="/api/v1/settlements", tags=["Settlements"]
)
app.include_router(quality.router, prefix="/api/v1/quality", tags=["Quality"])

logger.info("Grain settlement API ready - routes registered")


@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint.

    Returns a simple JSON object confirming the service is running.
    Useful for load balancers and monitoring systems.
    """
    return {"status": "healthy", "service": "grain-settlement-engine"}
