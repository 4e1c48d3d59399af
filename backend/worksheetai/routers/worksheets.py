from __future__ import annotations
import base64
import logging
import math
import re
import time
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ..db import get_db
from ..docx_render import DOCX_MIME, DocxRenderError, render_docx
from ..gemini_client import GeminiError
from ..job_queue import JobTimeout, worksheet_queue
from ..models import Template, User, UserAIMemory, Worksheet
from ..pdf_render import PdfRenderError, render_pdf
from ..serializers import worksheet_dict
from ..settings import settings
from ..storage import CloudinaryStorage, StorageError, get_storage
from ..worksheet_ai import GenerationRequest, InlineImage, WorksheetAI, get_worksheet_ai, normalize_content
from ..worksheet_document import build_document, fetch_assets
from .auth import IMAGE_TYPES, get_current_user

router = APIRouter(prefix="/api/worksheets", tags=["worksheets"])
logger = logging.getLogger(__name__)

DIFFICULTIES = ("easy", "medium", "hard")
DEFAULT_TEMPLATE_NAME = "Default Template"

# Sections that can be rewritten on their own, mapped to content keys
REGENERABLE_SECTIONS = {
	"Aim": "aim",
	"Problem Statement": "problemStatement",
	"Dataset": "dataset",
	"Code": "code",
	"Output": "output",
}


def _default_template(db: Session, user: User, subject: Optional[str]) -> Template:
	template = db.query(Template).filter(Template.template_name == DEFAULT_TEMPLATE_NAME).first()
	if template is None:
		template = Template(
			template_name=DEFAULT_TEMPLATE_NAME,
			university="General University",
			course="Computer Science",
			subject=subject or "Computer Science Lab",
			level="Post Graduate",
			style="Formal Academic",
			sections_order=["aim", "problemStatement", "dataset", "algorithm", "code", "output", "conclusion"],
			user_id=user.id,
		)
		db.add(template)
		db.commit()
		db.refresh(template)
		logger.info("Created default template")
	return template


def _memory_for(db: Session, user: User) -> UserAIMemory:
	memory = db.query(UserAIMemory).filter(UserAIMemory.user_id == user.id).first()
	if memory is None:
		memory = UserAIMemory(user_id=user.id)
		db.add(memory)
		db.commit()
		db.refresh(memory)
	return memory


def _owned_worksheet(db: Session, user: User, worksheet_id: str) -> Worksheet:
	worksheet = db.query(Worksheet).filter(Worksheet.id == worksheet_id, Worksheet.user_id == user.id).first()
	if worksheet is None:
		raise HTTPException(status_code=404, detail="Worksheet not found")
	return worksheet


def _is_image(upload: UploadFile) -> bool:
	return (upload.content_type or "").lower() in IMAGE_TYPES


async def _read_image(upload: UploadFile) -> bytes:
	if not _is_image(upload):
		raise HTTPException(status_code=400, detail="Only JPEG, PNG, GIF and WebP images are allowed")
	data = await upload.read()
	if len(data) > settings.max_upload_bytes:
		raise HTTPException(status_code=400, detail="File too large. Maximum size is 10MB.")
	return data


def _validation_error(errors: List[Dict[str, str]]) -> HTTPException:
	return HTTPException(status_code=400, detail={"message": "Validation failed", "errors": errors})


@router.post("/generate", status_code=201)
async def generate(
	topic: str = Form(""),
	syllabus: str = Form(""),
	difficulty: Optional[str] = Form(None),
	templateId: Optional[str] = Form(None),
	subject: Optional[str] = Form(None),
	additionalInstructions: Optional[str] = Form(None),
	experimentNumber: Optional[str] = Form(None),
	headerImageUrl: Optional[str] = Form(None),
	headerImage: Optional[UploadFile] = File(None),
	images: Optional[List[UploadFile]] = File(None),
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	storage: CloudinaryStorage = Depends(get_storage),
	ai: WorksheetAI = Depends(get_worksheet_ai),
):
	topic = topic.strip()
	syllabus = syllabus.strip()
	level = (difficulty or "medium").strip().lower()
	errors = []
	if not topic:
		errors.append({"field": "topic", "msg": "Topic is required"})
	if not syllabus:
		errors.append({"field": "syllabus", "msg": "Syllabus is required"})
	if level not in DIFFICULTIES:
		errors.append({"field": "difficulty", "msg": "Invalid difficulty level"})
	if errors:
		raise _validation_error(errors)

	if templateId:
		template = db.get(Template, templateId)
		if template is None:
			raise HTTPException(status_code=404, detail="Template not found")
	else:
		template = _default_template(db, user, subject)
	memory = _memory_for(db, user)

	uploads = [f for f in images or [] if f is not None and f.filename]
	attached: List[tuple] = []
	for upload in uploads:
		attached.append((upload.filename, upload.content_type, await _read_image(upload)))

	header_url = (headerImageUrl or "").strip() or None
	header_file: Optional[tuple] = None
	if header_url is None and headerImage is not None and headerImage.filename:
		header_file = (headerImage.filename, await _read_image(headerImage))

	worksheet_subject = subject or user.default_subject or template.subject
	req = GenerationRequest(
		topic=topic,
		syllabus=syllabus,
		difficulty=level,
		sections=list(template.sections_order or []),
		university=user.university,
		course=user.course,
		semester=user.semester,
		subject=worksheet_subject,
		level=template.level,
		writing_depth=memory.writing_depth,
		variation_level=memory.variation_level,
		common_mistakes=list(memory.common_mistakes or []),
		additional_instructions=additionalInstructions or "",
		variation_seed=f"{user.id}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}",
		images=[InlineImage(data=data, mime_type=mime) for _, mime, data in attached],
	)

	logger.info("Generating worksheet for user %s (%d images)", user.id, len(attached))
	try:
		generated = await worksheet_queue.run(ai.generate_worksheet(req))
	except JobTimeout as err:
		logger.error("Worksheet generation timed out for user %s", user.id)
		raise HTTPException(status_code=504, detail="Worksheet generation timed out") from err
	except GeminiError as err:
		logger.error("Generate worksheet error: %s", err)
		raise HTTPException(status_code=503 if err.transient else 500, detail=str(err) or "Failed to generate worksheet")

	if header_file is not None:
		try:
			stored = await storage.upload_image(header_file[1], header_file[0], user.id, "headers")
			header_url = stored.url
		except StorageError as err:
			logger.warning("Header image upload failed: %s", err)
	if header_url is None:
		header_url = user.header_image_url

	worksheet = Worksheet(
		user_id=user.id,
		template_id=template.id,
		topic=topic,
		subject=worksheet_subject,
		syllabus=syllabus,
		difficulty=level,
		content=normalize_content(generated),
		header_image_url=header_url,
		status="generated",
		experiment_number=experimentNumber or "N/A",
		date_of_performance=datetime.utcnow(),
	)
	db.add(worksheet)
	db.commit()
	db.refresh(worksheet)

	for filename, _, data in attached:
		try:
			stored = await storage.upload_image(data, filename, user.id, worksheet.id)
		except StorageError as err:
			logger.warning("Image upload for worksheet %s failed: %s", worksheet.id, err)
			continue
		worksheet.add_image(stored.url, "Output", "Image")

	template.increment_usage()
	memory.update_patterns(worksheet)
	db.commit()
	db.refresh(worksheet)
	return {"success": True, "message": "Worksheet generated successfully", "worksheet": worksheet_dict(worksheet)}


@router.get("/history")
async def history(page: int = 1, limit: int = 10, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	page = max(page, 1)
	limit = max(limit, 1)
	q = db.query(Worksheet).filter(Worksheet.user_id == user.id)
	total = q.count()
	rows = q.order_by(Worksheet.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
	templates = {t.id: t for t in db.query(Template).filter(Template.id.in_({w.template_id for w in rows})).all()} if rows else {}
	worksheets = [worksheet_dict(w, templates.get(w.template_id), ("templateName", "subject")) for w in rows]
	return {
		"success": True,
		"count": len(worksheets),
		"total": total,
		"page": page,
		"pages": math.ceil(total / limit),
		"worksheets": worksheets,
	}


@router.post("/{worksheet_id}/upload-image")
async def upload_image(
	worksheet_id: str,
	image: Optional[UploadFile] = File(None),
	section: Optional[str] = Form(None),
	caption: Optional[str] = Form(None),
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	storage: CloudinaryStorage = Depends(get_storage),
):
	if image is None or not image.filename:
		raise HTTPException(status_code=400, detail="No image file uploaded")
	worksheet = _owned_worksheet(db, user, worksheet_id)
	data = await _read_image(image)
	try:
		stored = await storage.upload_image(data, image.filename, user.id, worksheet.id)
	except StorageError as err:
		raise HTTPException(status_code=500, detail=str(err))
	entry = worksheet.add_image(stored.url, section or "Output", caption or "Image")
	db.commit()
	return {
		"success": True,
		"message": "Image uploaded successfully",
		"image": {"url": entry["url"], "section": entry["section"], "caption": entry["caption"]},
	}


class WorksheetUpdate(BaseModel):
	content: Optional[Dict[str, Any]] = None
	experimentNumber: Optional[str] = None
	dateOfPerformance: Optional[datetime] = None


@router.put("/{worksheet_id}")
async def update_worksheet(worksheet_id: str, req: WorksheetUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	worksheet = _owned_worksheet(db, user, worksheet_id)
	if req.content:
		worksheet.content = {**(worksheet.content or {}), **req.content}
	if req.experimentNumber:
		worksheet.experiment_number = req.experimentNumber
	if req.dateOfPerformance:
		worksheet.date_of_performance = req.dateOfPerformance
	worksheet.increment_version()
	db.commit()
	db.refresh(worksheet)
	return {"success": True, "message": "Worksheet updated successfully", "worksheet": worksheet_dict(worksheet)}


@router.post("/{worksheet_id}/generate-pdf")
async def generate_pdf(
	worksheet_id: str,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	storage: CloudinaryStorage = Depends(get_storage),
):
	worksheet = _owned_worksheet(db, user, worksheet_id)
	doc = build_document(worksheet, user)
	assets = await fetch_assets(doc.image_urls())
	try:
		pdf_bytes = await run_in_threadpool(render_pdf, doc, assets)
	except PdfRenderError as err:
		raise HTTPException(status_code=500, detail=str(err))
	try:
		stored = await storage.upload_generated_pdf(pdf_bytes, user.id, worksheet.id)
	except StorageError as err:
		raise HTTPException(status_code=500, detail=str(err))
	worksheet.pdf_url = stored.url
	worksheet.status = "finalized"
	db.commit()
	return {
		"success": True,
		"message": "PDF generated successfully",
		"pdfUrl": stored.url,
		"pdfBase64": base64.b64encode(pdf_bytes).decode("ascii"),
	}


def _slug(topic: str) -> str:
	slug = re.sub(r"[^a-z0-9]+", "_", (topic or "").lower()).strip("_")
	return slug or "worksheet"


@router.get("/{worksheet_id}/download-docx")
async def download_docx(worksheet_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	worksheet = _owned_worksheet(db, user, worksheet_id)
	doc = build_document(worksheet, user)
	assets = await fetch_assets(doc.image_urls())
	try:
		data = await run_in_threadpool(render_docx, doc, assets)
	except DocxRenderError as err:
		raise HTTPException(status_code=500, detail=str(err))
	filename = f"{_slug(worksheet.topic)}_worksheet.docx"
	return Response(
		content=data,
		media_type=DOCX_MIME,
		headers={"Content-Disposition": f'attachment; filename="{filename}"'},
	)


@router.get("/{worksheet_id}")
async def get_worksheet(worksheet_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	worksheet = _owned_worksheet(db, user, worksheet_id)
	template = db.get(Template, worksheet.template_id)
	return {"success": True, "worksheet": worksheet_dict(worksheet, template)}


class RegenerateRequest(BaseModel):
	section: str


@router.post("/{worksheet_id}/regenerate-section")
async def regenerate_section(
	worksheet_id: str,
	req: RegenerateRequest,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	ai: WorksheetAI = Depends(get_worksheet_ai),
):
	if not req.section.strip():
		raise _validation_error([{"field": "section", "msg": "Section name is required"}])
	worksheet = _owned_worksheet(db, user, worksheet_id)
	key = REGENERABLE_SECTIONS.get(req.section)
	if key is None:
		raise HTTPException(status_code=400, detail="Invalid section name")

	content = dict(worksheet.content or {})
	current = content.get(key)
	if key == "code":
		code = dict(current) if isinstance(current, dict) else {"language": "plaintext", "source": str(current or ""), "explanation": ""}
		current_text = code.get("source") or ""
	else:
		current_text = str(current or "")

	try:
		new_content = await ai.regenerate_section(req.section, current_text, topic=worksheet.topic, syllabus=worksheet.syllabus)
	except GeminiError as err:
		logger.error("Regenerate section error: %s", err)
		raise HTTPException(status_code=500, detail=str(err) or "Failed to regenerate section")

	if key == "code":
		code["source"] = new_content
		content[key] = code
	else:
		content[key] = new_content
	worksheet.content = content
	worksheet.increment_version()
	db.commit()
	db.refresh(worksheet)
	return {
		"success": True,
		"message": f"{req.section} regenerated successfully",
		"newContent": new_content,
		"worksheet": worksheet_dict(worksheet),
	}
