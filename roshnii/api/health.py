from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from roshnii.database import get_db

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "UP"}


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    checks = {
        "database": "DOWN",
    }

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "UP"
    except SQLAlchemyError as e:
        checks["database"] = f"DOWN: {e.__class__.__name__}"

    overall = "UP" if all(v == "UP" for v in checks.values()) else "DOWN"

    return {
        "status": overall,
        "checks": checks,
    }
