from __future__ import annotations
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.orm import Session

from ..db import SessionLocal, get_db
from ..models import Template, University, User
from ..pdf_text import extract_text_from_url
from ..serializers import university_dict
from ..storage import CloudinaryStorage, StorageError, get_storage
from ..template_cache import template_cache
from ..worksheet_ai import WorksheetAI, get_worksheet_ai
from .auth import IMAGE_TYPES, require_admin

router = APIRouter(prefix="/api/universities", tags=["universities"])
logger = logging.getLogger(__name__)

FALLBACK_SECTIONS = ["Aim", "Theory", "Procedure", "Observation", "Result"]


async def analyze_university(university_id: str, admin_id: str, ai: WorksheetAI, storage: CloudinaryStorage) -> None:
	"""Build (or refresh) a preset's official template from its sample PDF.

	Runs after the response is sent, so it opens its own session. The outcome
	is recorded on the university row as ``completed`` or ``failed``.
	"""
	db = SessionLocal()
	try:
		university = db.get(University, university_id)
		if university is None:
			logger.warning("University %s vanished before analysis", university_id)
			return
		try:
			pdf_url = university.sample_template_url
			if university.sample_template_public_id and storage.configured:
				pdf_url = storage.private_download_url(university.sample_template_public_id, "pdf")
			extracted = await extract_text_from_url(pdf_url)
			analysis = await ai.analyze_structure(
				extracted.text,
				university=university.name,
				course="General",
				subject="General",
			)

			template = db.get(Template, university.default_template_id) if university.default_template_id else None
			if template is None:
				name = f"{university.name} Official Template"
				template = db.query(Template).filter(Template.template_name == name).first()
			if template is not None:
				template.sections_order = analysis.sections or template.sections_order
				template.style = analysis.style or template.style
				template.level = analysis.level or template.level
				template.status = "active"
				logger.info("Default template updated: %s", template.id)
			else:
				template = Template(
					template_name=f"{university.name} Official Template",
					university=university.name,
					course="General",
					subject="General",
					sections_order=analysis.sections or list(FALLBACK_SECTIONS),
					style=analysis.style or "Formal Academic",
					level=analysis.level or "Undergraduate",
					created_from_sample=True,
					sample_pdf_url=university.sample_template_url,
					user_id=admin_id,
					status="active",
				)
				db.add(template)
				db.flush()
				logger.info("Default template created: %s", template.id)

			university.default_template_id = template.id
			university.analysis_status = "completed"
			university.analysis_error = None
			db.commit()
			template_cache.invalidate()
		except Exception as err:
			db.rollback()
			logger.error("Template analysis for %s failed: %s", university_id, err)
			university = db.get(University, university_id)
			if university is not None:
				university.analysis_status = "failed"
				university.analysis_error = str(err) or "Analysis failed"
				db.commit()
	finally:
		db.close()


@router.get("")
async def list_universities(db: Session = Depends(get_db)):
	rows = db.query(University).filter(University.is_active.is_(True)).order_by(University.name.asc()).all()
	template_ids = {u.default_template_id for u in rows if u.default_template_id}
	templates = {t.id: t for t in db.query(Template).filter(Template.id.in_(template_ids)).all()} if template_ids else {}
	logger.info("Public universities fetched: %d", len(rows))
	return {
		"success": True,
		"universities": [university_dict(u, templates.get(u.default_template_id), public=True) for u in rows],
	}


@router.get("/all")
async def list_all(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	rows = db.query(University).order_by(University.created_at.desc()).all()
	return {"success": True, "universities": [university_dict(u) for u in rows]}


@router.post("", status_code=201)
async def create_university(
	background: BackgroundTasks,
	name: str = Form(...),
	headerImage: Optional[UploadFile] = File(None),
	sampleTemplate: Optional[UploadFile] = File(None),
	admin: User = Depends(require_admin),
	db: Session = Depends(get_db),
	storage: CloudinaryStorage = Depends(get_storage),
	ai: WorksheetAI = Depends(get_worksheet_ai),
):
	name = name.strip()
	if not name:
		raise HTTPException(status_code=400, detail="University name is required")
	if headerImage is None or not headerImage.filename or sampleTemplate is None or not sampleTemplate.filename:
		raise HTTPException(status_code=400, detail="Both Header Image and Sample PDF are required")
	if (headerImage.content_type or "").lower() not in IMAGE_TYPES:
		raise HTTPException(status_code=400, detail="Header image must be JPEG, PNG, GIF or WebP")
	if db.query(University).filter(University.name == name).first() is not None:
		raise HTTPException(status_code=400, detail="University name already exists")

	try:
		header = await storage.upload_university_asset(await headerImage.read(), headerImage.filename, "image")
		sample = await storage.upload_university_asset(await sampleTemplate.read(), sampleTemplate.filename, "raw")
	except StorageError as err:
		raise HTTPException(status_code=500, detail=str(err))

	university = University(
		name=name,
		header_image_url=header.url,
		header_image_public_id=header.public_id,
		sample_template_url=sample.url,
		sample_template_public_id=sample.public_id,
		analysis_status="processing",
	)
	db.add(university)
	db.commit()
	db.refresh(university)
	logger.info("Analyzing sample template for %s", name)
	background.add_task(analyze_university, university.id, admin.id, ai, storage)
	return {"success": True, "university": university_dict(university)}


@router.post("/{university_id}/analyze")
async def reanalyze(
	university_id: str,
	background: BackgroundTasks,
	admin: User = Depends(require_admin),
	db: Session = Depends(get_db),
	storage: CloudinaryStorage = Depends(get_storage),
	ai: WorksheetAI = Depends(get_worksheet_ai),
):
	university = db.get(University, university_id)
	if university is None:
		raise HTTPException(status_code=404, detail="University not found")
	if not university.sample_template_url:
		raise HTTPException(status_code=400, detail="No sample PDF available to analyze")
	university.analysis_status = "processing"
	db.commit()
	logger.info("Retrying analysis for %s", university.name)
	background.add_task(analyze_university, university.id, admin.id, ai, storage)
	return {"success": True, "message": "Analysis started in background"}


@router.delete("/{university_id}")
async def delete_university(
	university_id: str,
	admin: User = Depends(require_admin),
	db: Session = Depends(get_db),
	storage: CloudinaryStorage = Depends(get_storage),
):
	university = db.get(University, university_id)
	if university is None:
		raise HTTPException(status_code=404, detail="University not found")
	try:
		await storage.delete(university.header_image_public_id, resource_type="image")
		await storage.delete(university.sample_template_public_id, resource_type="raw")
	except StorageError as err:
		raise HTTPException(status_code=500, detail=str(err))
	db.delete(university)
	db.commit()
	template_cache.invalidate()
	return {"success": True, "message": "University deleted"}
