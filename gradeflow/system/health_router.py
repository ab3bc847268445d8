import logging
from datetime import datetime
from typing import Dict

import httpx
from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from gradeflow.common.utils import utcnow
from gradeflow.config import (
    AUTH_SERVICE_URL, COURSE_SERVICE_URL, HEALTH_TIMEOUT_SECONDS, VERSION
)
from gradeflow.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["System"])

# Upstream collaborators: identity tokens and course rosters
SERVERS = {
    "auth": AUTH_SERVICE_URL,
    "courses": COURSE_SERVICE_URL,
}


async def check_service(client: httpx.AsyncClient, url: str) -> dict:
    """Ping one upstream /health endpoint and time it"""
    start = datetime.now()
    try:
        resp = await client.get(url, timeout=HEALTH_TIMEOUT_SECONDS)
    except httpx.HTTPError as e:
        return {"status": "DOWN", "error": type(e).__name__}

    latency_ms = (datetime.now() - start).total_seconds() * 1000
    return {
        "status": "UP" if resp.status_code == 200 else "DOWN",
        "latency_ms": round(latency_ms, 1)
    }


async def check_services(client: httpx.AsyncClient, servers: Dict[str, str]) -> dict:
    results = {}
    for name, url in servers.items():
        if not url:
            results[name] = {"status": "UNCONFIGURED"}
            continue
        results[name] = await check_service(client, url)
    return results


@router.get("/health")
async def health_check(db: AsyncIOMotorDatabase = Depends(get_db)):
    """Health check with database connectivity test"""
    try:
        await db.command("ping")
        return {"status": "healthy", "database": "connected", "version": VERSION}
    except PyMongoError as e:
        logger.error("Health check failed: %s", e)
        return {
            "status": "unhealthy",
            "database": "disconnected",
            "error": str(e),
            "version": VERSION
        }


@router.get("/health/dependencies")
async def dependencies_health():
    """Reachability of the upstream services this API relies on"""
    async with httpx.AsyncClient() as client:
        services = await check_services(client, SERVERS)

    return {"timestamp": utcnow(), "services": services}
