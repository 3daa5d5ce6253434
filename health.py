import time
import logging
from datetime import datetime, timezone

import psutil
from fastapi import APIRouter, Depends
from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import config
import database
import twelvedata_provider
from database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/health", tags=["health"])


def check_database(db: Session):
    """Run a trivial query and confirm every model table exists."""
    import models  # noqa: F401  (registers tables on Base.metadata)

    try:
        start_time = time.time()
        db.execute(text("SELECT 1"))
        latency = (time.time() - start_time) * 1000

        existing = set(inspect(db.get_bind()).get_table_names())
        missing = sorted(set(database.Base.metadata.tables) - existing)
        result = {
            "backend": database.describe_backend(db.get_bind()),
            "latency_ms": round(latency, 2),
            "tables": len(existing),
        }
        if missing:
            result.update(status="warning", message=f"Missing tables: {', '.join(missing)}")
        else:
            result.update(status="ok", message="Connected and all tables exist")
        return result
    except SQLAlchemyError as e:
        logger.error("Database health check failed: %s", e)
        return {"status": "error", "message": str(e)}


def check_integrations():
    """Configuration state of the payment and storage integrations."""
    billing = (
        {"status": "ok", "message": "Stripe configured",
         "webhook_secret": bool(config.STRIPE_WEBHOOK_SECRET)}
        if config.STRIPE_SECRET_KEY
        else {"status": "disabled", "message": "Stripe not configured"}
    )
    storage = (
        {"status": "ok", "message": f"S3 bucket {config.AWS_S3_BUCKET_NAME}", "region": config.AWS_REGION}
        if config.AWS_S3_BUCKET_NAME
        else {"status": "disabled", "message": "S3 not configured"}
    )
    return billing, storage


# Host memory use above this marks the service degraded
MEMORY_WARNING_PCT = 90


def check_system_resources():
    """Memory footprint of this API process, with host memory pressure."""
    try:
        process = psutil.Process()
        with process.oneshot():
            rss = process.memory_info().rss
            threads = process.num_threads()
            started = process.create_time()
        host_memory = psutil.virtual_memory().percent
    except (OSError, psutil.Error) as e:
        return {"status": "error", "message": f"Resource check failed: {e}"}

    return {
        "process_rss_mb": round(rss / (1024 * 1024), 2),
        "process_threads": threads,
        "uptime_s": round(time.time() - started),
        "host_memory_pct": host_memory,
        "status": "ok" if host_memory < MEMORY_WARNING_PCT else "warning",
    }


def get_full_health(db: Session):
    """Aggregate all health checks."""
    db_status = check_database(db)
    market = twelvedata_provider.check_connectivity()
    billing, storage = check_integrations()
    resources = check_system_resources()
    cache_stats = dict(twelvedata_provider.price_cache.stats(), status="ok")

    # Market data is optional: "disabled" does not degrade the service
    overall = "ok"
    if db_status["status"] == "error":
        overall = "error"
    elif (db_status["status"] == "warning"
          or market["status"] == "error"
          or resources["status"] != "ok"):
        overall = "warning"

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "overall_status": overall,
        "environment": config.APP_ENV,
        "components": {
            "database": db_status,
            "market_data": market,
            "billing": billing,
            "storage": storage,
            "cache": cache_stats,
            "resources": resources
        }
    }


@router.get("")
def health(db: Session = Depends(get_db)):
    """Liveness check"""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": config.APP_ENV,
        "database": database.describe_backend(db.get_bind()),
        "auth": "jwt",
    }


@router.get("/full")
def full_health(db: Session = Depends(get_db)):
    return get_full_health(db)


if __name__ == "__main__":
    import json
    config.setup_logging()
    session = database.SessionLocal()
    try:
        print(json.dumps(get_full_health(session), indent=2, default=str))
    finally:
        session.close()
