"""Row -> JSON shapes the frontend reads (``_id`` plus camelCase keys)."""

from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from .models import NOT_SET, Template, University, User, Worksheet

PROFILE_FIELDS = ("name", "email", "university", "course", "semester", "default_subject", "uid", "branch", "section")


def _iso(value: Optional[datetime]) -> Optional[str]:
	return value.isoformat() if value else None


def profile_completion(user: User) -> int:
	filled = 0
	for name in PROFILE_FIELDS:
		value = getattr(user, name)
		if value and str(value).strip() and value != NOT_SET:
			filled += 1
	return round(100 * filled / len(PROFILE_FIELDS))


def user_dict(user: User) -> Dict[str, Any]:
	return {
		"_id": user.id,
		"externalId": user.external_id,
		"email": user.email,
		"name": user.name,
		"university": user.university,
		"course": user.course,
		"semester": user.semester,
		"defaultSubject": user.default_subject,
		"uid": user.uid,
		"branch": user.branch,
		"section": user.section,
		"headerImageUrl": user.header_image_url,
		"profileCompleted": bool(user.profile_completed),
		"lastLogin": _iso(user.last_login),
		"createdAt": _iso(user.created_at),
		"updatedAt": _iso(user.updated_at),
	}


def template_dict(template: Template, fields: Optional[Iterable[str]] = None) -> Dict[str, Any]:
	data = {
		"_id": template.id,
		"templateName": template.template_name,
		"university": template.university,
		"course": template.course,
		"subject": template.subject,
		"sectionsOrder": list(template.sections_order or []),
		"style": template.style,
		"level": template.level,
		"createdFromSample": bool(template.created_from_sample),
		"samplePdfUrl": template.sample_pdf_url,
		"userId": template.user_id,
		"usageCount": template.usage_count,
		"status": template.status,
		"createdAt": _iso(template.created_at),
		"updatedAt": _iso(template.updated_at),
	}
	if fields is not None:
		keep = {"_id", *fields}
		data = {k: v for k, v in data.items() if k in keep}
	return data


def worksheet_dict(worksheet: Worksheet, template: Optional[Template] = None, template_fields: Optional[Iterable[str]] = None) -> Dict[str, Any]:
	return {
		"_id": worksheet.id,
		"userId": worksheet.user_id,
		"templateId": template_dict(template, template_fields) if template is not None else worksheet.template_id,
		"topic": worksheet.topic,
		"subject": worksheet.subject,
		"syllabus": worksheet.syllabus,
		"difficulty": worksheet.difficulty,
		"content": worksheet.content or {},
		"images": list(worksheet.images or []),
		"headerImageUrl": worksheet.header_image_url,
		"pdfUrl": worksheet.pdf_url,
		"version": worksheet.version,
		"status": worksheet.status,
		"experimentNumber": worksheet.experiment_number,
		"dateOfPerformance": _iso(worksheet.date_of_performance),
		"createdAt": _iso(worksheet.created_at),
		"updatedAt": _iso(worksheet.updated_at),
	}


def university_dict(university: University, template: Optional[Template] = None, public: bool = False) -> Dict[str, Any]:
	if template is not None:
		default_template: Any = template_dict(template, ("templateName", "sectionsOrder", "style", "level"))
	else:
		default_template = university.default_template_id
	data = {
		"_id": university.id,
		"name": university.name,
		"headerImageUrl": university.header_image_url,
		"sampleTemplateUrl": university.sample_template_url,
		"defaultTemplateId": default_template,
		"analysisStatus": university.analysis_status,
	}
	if public:
		return data
	data.update({
		"headerImagePublicId": university.header_image_public_id,
		"sampleTemplatePublicId": university.sample_template_public_id,
		"isActive": bool(university.is_active),
		"analysisError": university.analysis_error,
		"createdAt": _iso(university.created_at),
		"updatedAt": _iso(university.updated_at),
	})
	return data
