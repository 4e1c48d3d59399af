from __future__ import annotations
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..gemini_client import GeminiError
from ..pdf_text import PdfExtractionError, extract_text_from_url
from ..settings import settings
from ..worksheet_ai import WorksheetAI, get_worksheet_ai

router = APIRouter(prefix="/api/test", tags=["diagnostics"])
logger = logging.getLogger(__name__)

PREVIEW_CHARS = 500


@router.get("/gemini")
async def test_gemini(ai: WorksheetAI = Depends(get_worksheet_ai)):
	try:
		result = await ai.test_connection()
	except GeminiError as err:
		logger.error("AI connection test failed: %s", err)
		return JSONResponse(
			status_code=500,
			content={"success": False, "apiKeyValid": False, "message": str(err), "model": settings.gemini_model},
		)
	return {"success": True, "apiKeyValid": True, "model": result["model"], "testResponse": result["message"]}


class PdfDownloadRequest(BaseModel):
	pdfUrl: Optional[str] = None


@router.post("/pdf-download")
async def test_pdf_download(req: PdfDownloadRequest):
	if not req.pdfUrl:
		raise HTTPException(status_code=400, detail="pdfUrl is required")
	try:
		extracted = await extract_text_from_url(req.pdfUrl)
	except PdfExtractionError as err:
		raise HTTPException(status_code=500, detail=str(err))
	return {
		"success": True,
		"message": "PDF downloaded and extracted successfully!",
		"data": {
			"pages": extracted.pages,
			"textLength": len(extracted.text),
			"preview": extracted.text[:PREVIEW_CHARS],
		},
	}
