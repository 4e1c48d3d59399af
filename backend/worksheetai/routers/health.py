from datetime import datetime, timezone

from fastapi import APIRouter

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
def health():
	return {
		"status": "OK",
		"message": "WorksheetAI API is running",
		"timestamp": datetime.now(timezone.utc).isoformat(),
	}
