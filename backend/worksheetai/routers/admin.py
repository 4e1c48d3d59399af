from __future__ import annotations
import math
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import University, User, Worksheet
from ..serializers import user_dict
from .auth import require_admin

router = APIRouter(prefix="/api/admin", tags=["admin"])


def month_start(now: datetime) -> datetime:
	"""First instant of ``now``'s month, 00:00 UTC, as a naive UTC datetime."""
	return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


@router.get("/stats")
async def stats(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	now = datetime.now(timezone.utc).replace(tzinfo=None)
	return {
		"success": True,
		"stats": {
			"totalUsers": db.query(User).count(),
			"monthlyUsage": db.query(Worksheet).filter(Worksheet.created_at >= month_start(now)).count(),
			"totalWorksheets": db.query(Worksheet).count(),
			"totalUniversities": db.query(University).count(),
			"timestamp": now.isoformat(),
		},
	}


@router.get("/users")
async def users(page: int = 1, limit: int = 10, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	page = max(page, 1)
	limit = max(limit, 1)
	total = db.query(User).count()
	rows = db.query(User).order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
	return {
		"success": True,
		"users": [user_dict(u) for u in rows],
		"pagination": {
			"current": page,
			"pages": math.ceil(total / limit),
			"total": total,
			"hasMore": page * limit < total,
		},
	}
