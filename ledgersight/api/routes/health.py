from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from ledgersight.api.deps import get_db
from ledgersight.jobs.scheduler import get_scheduler_status


router = APIRouter(tags=["health"])


@router.get("/health")
def health(db: Session = Depends(get_db)) -> dict:
    db.execute(text("SELECT 1"))
    return {
        "ok": True,
        "database": "up",
        "scheduler": get_scheduler_status(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
