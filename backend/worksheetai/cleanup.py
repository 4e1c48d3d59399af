from __future__ import annotations
import logging
from datetime import datetime
from sqlalchemy import update
from sqlalchemy.orm import Session

from .models import University

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Analysis interrupted by server restart"


def fail_interrupted_analyses(db: Session) -> int:
	# Background analyses die with the process; nothing will ever finish them
	res = db.execute(
		update(University)
		.where(University.analysis_status == "processing")
		.values(analysis_status="failed", analysis_error=INTERRUPTED_MESSAGE, updated_at=datetime.utcnow())
	)
	db.commit()
	count = res.rowcount or 0
	if count:
		logger.warning("Marked %d interrupted university analyses as failed", count)
	return count
