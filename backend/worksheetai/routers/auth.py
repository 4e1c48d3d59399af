from __future__ import annotations
from datetime import datetime
from typing import Optional
import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..db import get_db
from ..identity import IdentityError, fetch_profile, verify_token
from ..models import NOT_SET, User, UserAIMemory
from ..serializers import profile_completion, user_dict
from ..settings import settings
from ..storage import CloudinaryStorage, StorageError, get_storage

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

IMAGE_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp")


def _placeholder_email(subject: str) -> str:
	return f"{subject.lower()}@users.worksheetai.local"


async def _provision_user(db: Session, subject: str, email: Optional[str], name: Optional[str]) -> User:
	if not email or not name:
		looked_up = await fetch_profile(subject)
		if looked_up is not None:
			email = email or looked_up.email
			name = name or looked_up.name
	email = (email or _placeholder_email(subject)).strip().lower()

	# Same person signing in under a new provider account keeps their data
	user = db.query(User).filter(User.email == email).first()
	if user is not None:
		logger.info("Relinking user %s to subject %s", user.id, subject)
		user.external_id = subject
	else:
		user = User(external_id=subject, email=email, name=name or "User")
		db.add(user)
		db.flush()
		db.add(UserAIMemory(
			user_id=user.id,
			preferred_structure="LAB_STYLE",
			writing_depth="medium",
			variation_level="high",
		))
		logger.info("Created user %s for subject %s", user.id, subject)
	return user


async def get_current_user(
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
	db: Session = Depends(get_db),
) -> User:
	if credentials is None or not credentials.credentials:
		raise HTTPException(status_code=401, detail="No authentication token, access denied")
	try:
		identity = verify_token(credentials.credentials)
	except IdentityError as err:
		raise HTTPException(status_code=401, detail=f"Invalid session/token: {err}")

	user = db.query(User).filter(User.external_id == identity.subject).first()
	if user is None:
		user = await _provision_user(db, identity.subject, identity.email, identity.name)
	user.last_login = datetime.utcnow()
	db.commit()
	db.refresh(user)
	return user


def require_admin(user: User = Depends(get_current_user)) -> User:
	admin_email = (settings.admin_email or "").strip().lower()
	if not admin_email:
		logger.error("ADMIN_EMAIL is not configured")
		raise HTTPException(status_code=500, detail="Server configuration error: admin email not set")
	if (user.email or "").strip().lower() != admin_email:
		raise HTTPException(status_code=403, detail="Access denied. Admin privileges required.")
	return user


class ProfileUpdate(BaseModel):
	name: Optional[str] = None
	university: Optional[str] = None
	course: Optional[str] = None
	semester: Optional[str] = None
	defaultSubject: Optional[str] = None
	uid: Optional[str] = None
	branch: Optional[str] = None
	section: Optional[str] = None


_PROFILE_COLUMNS = {
	"name": "name",
	"university": "university",
	"course": "course",
	"semester": "semester",
	"defaultSubject": "default_subject",
	"uid": "uid",
	"branch": "branch",
	"section": "section",
}


# Blank values for these leave the stored value alone; the rest may be cleared
_REQUIRED_FIELDS = {"name", "university", "course", "semester"}


def _apply_profile(user: User, req: ProfileUpdate) -> None:
	for field, column in _PROFILE_COLUMNS.items():
		value = getattr(req, field)
		if field in _REQUIRED_FIELDS and not (value and value.strip()):
			continue
		if value is not None:
			setattr(user, column, value)


def _is_set(value: Optional[str]) -> bool:
	return bool(value and value.strip() and value != NOT_SET)


@router.post("/sync-profile")
async def sync_profile(req: ProfileUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	_apply_profile(user, req)
	if all(_is_set(v) for v in (user.university, user.course, user.semester)):
		user.profile_completed = True
	db.commit()
	db.refresh(user)
	return {"success": True, "user": user_dict(user)}


@router.get("/profile")
async def get_profile(user: User = Depends(get_current_user)):
	data = user_dict(user)
	data["profileCompletion"] = profile_completion(user)
	return {"success": True, "user": data}


@router.put("/profile")
async def update_profile(req: ProfileUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	_apply_profile(user, req)
	db.commit()
	db.refresh(user)
	return {"success": True, "user": user_dict(user)}


@router.post("/upload-header")
async def upload_header(
	headerImage: UploadFile = File(...),
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	storage: CloudinaryStorage = Depends(get_storage),
):
	if (headerImage.content_type or "").lower() not in IMAGE_TYPES:
		raise HTTPException(status_code=400, detail="Only JPEG, PNG, GIF and WebP images are allowed")
	data = await headerImage.read()
	if not data:
		raise HTTPException(status_code=400, detail="No image file uploaded")
	if len(data) > settings.max_upload_bytes:
		raise HTTPException(status_code=400, detail="File too large. Maximum size is 10MB.")

	if user.header_image_public_id:
		try:
			await storage.delete(user.header_image_public_id, resource_type="image")
		except StorageError as err:
			logger.warning("Could not delete old header %s: %s", user.header_image_public_id, err)

	try:
		stored = await storage.upload_image(data, headerImage.filename or "header", user.id, "headers")
	except StorageError as err:
		raise HTTPException(status_code=500, detail=str(err))
	user.header_image_url = stored.url
	user.header_image_public_id = stored.public_id
	db.commit()
	db.refresh(user)
	return {"success": True, "message": "Header image uploaded successfully", "headerImageUrl": stored.url, "user": user_dict(user)}


@router.delete("/delete-header")
async def delete_header(
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	storage: CloudinaryStorage = Depends(get_storage),
):
	if not user.header_image_url:
		raise HTTPException(status_code=404, detail="No header image to delete")
	if user.header_image_public_id:
		try:
			await storage.delete(user.header_image_public_id, resource_type="image")
		except StorageError as err:
			logger.warning("Could not delete header %s: %s", user.header_image_public_id, err)
	user.header_image_url = None
	user.header_image_public_id = None
	db.commit()
	db.refresh(user)
	return {"success": True, "message": "Header image deleted successfully", "user": user_dict(user)}
