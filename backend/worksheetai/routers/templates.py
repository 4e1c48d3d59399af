from __future__ import annotations
import logging
import re
import time
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ..db import get_db
from ..models import Template, User
from ..pdf_text import ExtractedPdf, PdfExtractionError, detect_sections, extract_text, extract_text_from_url, validate_structure
from ..selection import cached_suggestions, select_template, suggest_templates
from ..serializers import template_dict
from ..settings import settings
from ..storage import CloudinaryStorage, StorageError, get_storage, is_storage_url, public_id_from_url
from ..template_cache import cache_key, template_cache
from ..worksheet_ai import WorksheetAI, get_worksheet_ai
from .auth import get_current_user

router = APIRouter(prefix="/api/templates", tags=["templates"])
logger = logging.getLogger(__name__)


@router.post("/upload-sample")
async def upload_sample(
	pdf: Optional[UploadFile] = File(None),
	user: User = Depends(get_current_user),
	storage: CloudinaryStorage = Depends(get_storage),
):
	if pdf is None:
		raise HTTPException(status_code=400, detail="No PDF file uploaded")
	filename = pdf.filename or ""
	if pdf.content_type != "application/pdf" or not filename.lower().endswith(".pdf"):
		raise HTTPException(status_code=400, detail="Only PDF files are allowed")
	data = await pdf.read()
	if len(data) > settings.max_upload_bytes:
		raise HTTPException(status_code=400, detail="File too large. Maximum size is 10MB.")

	# Text comes from the local bytes; the stored copy may not be readable back
	try:
		extracted = await run_in_threadpool(extract_text, data)
	except PdfExtractionError as err:
		raise HTTPException(status_code=400, detail=str(err))
	logger.info("Extracted %d characters from %d pages", len(extracted.text), extracted.pages)

	try:
		stored = await storage.upload_pdf(data, filename, user.id)
	except StorageError as err:
		raise HTTPException(status_code=500, detail=str(err))
	return {
		"success": True,
		"message": "PDF uploaded successfully",
		"data": {
			"pdfUrl": stored.url,
			"publicId": stored.public_id,
			"size": stored.bytes,
			"extractedText": extracted.text,
			"pages": extracted.pages,
		},
	}


class AnalyzeRequest(BaseModel):
	pdfUrl: str
	extractedText: Optional[str] = None


async def _extract_remote(pdf_url: str, storage: CloudinaryStorage) -> ExtractedPdf:
	try:
		return await extract_text_from_url(pdf_url)
	except PdfExtractionError as err:
		if err.status_code != 401 or not is_storage_url(pdf_url):
			raise
		public_id = public_id_from_url(pdf_url)
		if not public_id:
			raise
		logger.info("401 fetching sample, retrying with signed URL")
		try:
			signed = storage.signed_url(public_id)
		except StorageError:
			raise err
		return await extract_text_from_url(signed)


@router.post("/analyze")
async def analyze(
	req: AnalyzeRequest,
	user: User = Depends(get_current_user),
	storage: CloudinaryStorage = Depends(get_storage),
	ai: WorksheetAI = Depends(get_worksheet_ai),
):
	if not req.pdfUrl.strip():
		raise HTTPException(status_code=400, detail="PDF URL is required")
	if req.extractedText:
		extracted = ExtractedPdf(text=req.extractedText, pages=1)
	else:
		try:
			extracted = await _extract_remote(req.pdfUrl, storage)
		except PdfExtractionError as err:
			raise HTTPException(status_code=500, detail=str(err))

	validation = validate_structure(extracted)
	if not validation.is_valid:
		raise HTTPException(status_code=400, detail={"message": "PDF validation failed", "issues": validation.issues})

	detected = detect_sections(extracted.text)
	analysis = await ai.analyze_structure(
		extracted.text,
		university=user.university,
		course=user.course,
		subject=user.default_subject,
	)
	sections = analysis.sections if analysis.confidence == "high" and analysis.sections else detected
	return {
		"success": True,
		"message": "PDF analyzed successfully",
		"data": {
			"sections": sections,
			"style": analysis.style,
			"level": analysis.level,
			"confidence": analysis.confidence,
			"pdfUrl": req.pdfUrl,
			"pages": extracted.pages,
		},
	}


class SaveTemplateRequest(BaseModel):
	sections: List[str]
	style: str
	subject: str
	level: Optional[str] = None
	pdfUrl: Optional[str] = None


@router.post("/save", status_code=201)
async def save_template(req: SaveTemplateRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	if not req.style.strip():
		raise HTTPException(status_code=400, detail="Style is required")
	if not req.subject.strip():
		raise HTTPException(status_code=400, detail="Subject is required")
	name = "_".join([
		re.sub(r"\s+", "_", user.university),
		re.sub(r"\s+", "_", req.subject),
		str(int(time.time() * 1000)),
	])
	template = Template(
		template_name=name,
		university=user.university,
		course=user.course,
		subject=req.subject,
		sections_order=req.sections,
		style=req.style or "Formal Academic",
		level=req.level or "Post Graduate",
		created_from_sample=bool(req.pdfUrl),
		sample_pdf_url=req.pdfUrl,
		user_id=user.id,
	)
	db.add(template)
	db.commit()
	db.refresh(template)
	template_cache.invalidate(cache_key(user.id))
	logger.info("Saved template %s for user %s", template.template_name, user.id)
	return {"success": True, "message": "Template saved successfully", "template": template_dict(template)}


@router.get("/suggestions")
async def suggestions(
	subject: Optional[str] = None,
	university: Optional[str] = None,
	refresh: bool = False,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	if university:
		templates = [template_dict(t) for t in suggest_templates(db, user, subject=subject, university=university)]
	else:
		templates = cached_suggestions(db, user, subject=subject, refresh=refresh)
	return {"success": True, "count": len(templates), "templates": templates}


@router.get("/selection")
async def selection(
	universityId: Optional[str] = None,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	storage: CloudinaryStorage = Depends(get_storage),
):
	return {"success": True, **select_template(db, user, storage, universityId)}


def _get_template(db: Session, template_id: str) -> Template:
	template = db.get(Template, template_id)
	if template is None:
		raise HTTPException(status_code=404, detail="Template not found")
	return template


@router.get("/{template_id}")
async def get_template(template_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	return {"success": True, "template": template_dict(_get_template(db, template_id))}


@router.get("/{template_id}/signed-url")
async def signed_url(
	template_id: str,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	storage: CloudinaryStorage = Depends(get_storage),
):
	template = _get_template(db, template_id)
	if not template.sample_pdf_url:
		raise HTTPException(status_code=404, detail="Template does not have a PDF")

	url = template.sample_pdf_url
	public_id = public_id_from_url(url) if is_storage_url(url) else None
	if public_id:
		try:
			exists = await storage.resource_exists(public_id)
		except StorageError as err:
			logger.warning("Skipping existence check for %s: %s", public_id, err)
			exists = True
		if not exists:
			logger.info("Sample %s no longer in storage; invalidating template %s", public_id, template.id)
			template.status = "invalid"
			db.commit()
			template_cache.invalidate()
			raise HTTPException(status_code=404, detail="Template PDF has been deleted from storage")
		try:
			url = storage.signed_url(public_id)
		except StorageError as err:
			logger.warning("Could not sign %s: %s", public_id, err)
	return {"success": True, "signedUrl": url}
