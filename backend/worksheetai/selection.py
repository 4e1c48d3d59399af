"""Template suggestions and generator-page template/preview selection.

The generator page works in one of two modes. In *preset* mode a university
preset supplies the template and the header image; in *manual* mode the
student picks from templates suggested for their university and course.
"""

from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from .models import Template, University, User
from .serializers import template_dict, university_dict
from .settings import settings
from .storage import CloudinaryStorage, StorageError, is_storage_url, public_id_from_url
from .template_cache import cache_key, template_cache

logger = logging.getLogger(__name__)

SUGGESTION_LIMIT = 5
OTHER_UNIVERSITY = "other"


def suggest_templates(
	db: Session,
	user: User,
	*,
	subject: Optional[str] = None,
	university: Optional[str] = None,
	limit: int = SUGGESTION_LIMIT,
) -> List[Template]:
	q = db.query(Template).filter(Template.status != "invalid")
	if university:
		q = q.filter(Template.university == university)
	else:
		q = q.filter(Template.university == user.university, Template.course == user.course)
	if subject:
		q = q.filter(Template.subject == subject)
	return q.order_by(Template.usage_count.desc(), Template.created_at.desc()).limit(limit).all()


def cached_suggestions(db: Session, user: User, *, subject: Optional[str] = None, refresh: bool = False) -> List[Dict[str, Any]]:
	"""Profile-based suggestions, cached per user.

	Subject-filtered lookups bypass the cache since the entry holds only the
	unfiltered list.
	"""
	if subject:
		return [template_dict(t) for t in suggest_templates(db, user, subject=subject)]
	key = cache_key(user.id)
	if not refresh:
		hit = template_cache.get(key)
		if hit is not None:
			logger.debug("Template suggestions cache hit for %s", user.id)
			return hit
	data = [template_dict(t) for t in suggest_templates(db, user)]
	template_cache.set(key, data)
	return data


def default_preset(universities: List[University]) -> Optional[University]:
	matches = [m.strip().lower() for m in settings.default_university_match.split(",") if m.strip()]
	if not matches:
		return None
	contains, exact = matches[0], matches[1:]
	for uni in universities:
		name = (uni.name or "").lower()
		if contains in name or name in exact:
			return uni
	return None


def manual_preview(template: Optional[Template], storage: CloudinaryStorage) -> Optional[str]:
	if template is None or not template.sample_pdf_url:
		return None
	url = template.sample_pdf_url
	if is_storage_url(url):
		public_id = public_id_from_url(url)
		if public_id:
			try:
				return storage.signed_url(public_id)
			except StorageError as err:
				logger.warning("Falling back to raw sample URL for %s: %s", template.id, err)
	return url


def select_template(
	db: Session,
	user: User,
	storage: CloudinaryStorage,
	university_id: Optional[str] = None,
) -> Dict[str, Any]:
	presets = db.query(University).filter(University.is_active.is_(True)).order_by(University.name.asc()).all()

	preset: Optional[University] = None
	if university_id is None:
		preset = default_preset(presets)
	elif university_id != OTHER_UNIVERSITY:
		preset = next((u for u in presets if u.id == university_id), None)

	result: Dict[str, Any] = {
		"mode": "preset" if preset else "manual",
		"selectedUniversityId": preset.id if preset else (OTHER_UNIVERSITY if university_id == OTHER_UNIVERSITY else None),
		"university": None,
		"templates": [],
		"selectedTemplateId": None,
		"headerImageUrl": None,
		"previewUrl": None,
	}

	if preset is None:
		templates = cached_suggestions(db, user)
		result["templates"] = templates
		if templates:
			selected = db.get(Template, templates[0]["_id"])
			result["selectedTemplateId"] = templates[0]["_id"]
			result["previewUrl"] = manual_preview(selected, storage)
		return result

	default = db.get(Template, preset.default_template_id) if preset.default_template_id else None
	result["university"] = university_dict(preset, default, public=True)
	result["headerImageUrl"] = preset.header_image_url
	result["previewUrl"] = preset.sample_template_url
	if default is not None:
		result["templates"] = [template_dict(default)]
		result["selectedTemplateId"] = default.id
		return result

	templates = [template_dict(t) for t in suggest_templates(db, user, university=preset.name)]
	result["templates"] = templates
	if templates:
		ids = [t["_id"] for t in templates]
		result["selectedTemplateId"] = preset.default_template_id if preset.default_template_id in ids else ids[0]
	return result
