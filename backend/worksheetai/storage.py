from __future__ import annotations
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import unquote

import cloudinary.api
import cloudinary.uploader
import cloudinary.utils
from cloudinary.exceptions import Error as CloudinaryError
from cloudinary.exceptions import NotFound
from starlette.concurrency import run_in_threadpool

from .settings import settings

logger = logging.getLogger(__name__)

_PUBLIC_ID_RE = re.compile(r"/upload/(?:v\d+/)?(.+)$")

# Header and worksheet images are stored at most 1200px on the long side
_IMAGE_TRANSFORMATION = [{"width": 1200, "height": 1200, "crop": "limit"}, {"quality": "auto"}]


class StorageError(RuntimeError):
	def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
		super().__init__(message)
		self.status_code = status_code


@dataclass
class StoredFile:
	url: str
	public_id: str
	bytes: int = 0
	format: Optional[str] = None
	width: Optional[int] = None
	height: Optional[int] = None


def is_storage_url(url: Optional[str]) -> bool:
	return bool(url) and "cloudinary.com" in url


def public_id_from_url(url: str) -> Optional[str]:
	match = _PUBLIC_ID_RE.search(url or "")
	if not match:
		return None
	return unquote(match.group(1))


class CloudinaryStorage:
	"""Upload, delete and sign assets with the Cloudinary SDK.

	Credentials are passed on every call instead of through the global
	``cloudinary.config`` so several instances can coexist.
	"""

	def __init__(
		self,
		cloud_name: Optional[str] = None,
		api_key: Optional[str] = None,
		api_secret: Optional[str] = None,
		*,
		root_folder: Optional[str] = None,
	) -> None:
		self.cloud_name = cloud_name or settings.cloudinary_cloud_name
		self.api_key = api_key or settings.cloudinary_api_key
		self.api_secret = api_secret or settings.cloudinary_api_secret
		self.root_folder = root_folder or settings.storage_root_folder

	@property
	def configured(self) -> bool:
		return bool(self.cloud_name and self.api_key and self.api_secret)

	def _credentials(self) -> Dict[str, Any]:
		if not self.configured:
			raise StorageError("Cloudinary configuration incomplete. Please set CLOUDINARY_* environment variables.")
		return {
			"cloud_name": self.cloud_name,
			"api_key": self.api_key,
			"api_secret": self.api_secret,
			"secure": True,
		}

	async def _upload(self, data: bytes, filename: str, resource_type: str, **params: Any) -> StoredFile:
		options = {**self._credentials(), **params, "resource_type": resource_type}
		try:
			result = await run_in_threadpool(cloudinary.uploader.upload, (filename, data), **options)
		except CloudinaryError as err:
			logger.error("Cloudinary %s upload error: %s", resource_type, err)
			raise StorageError(f"Failed to upload {resource_type} to storage") from err
		return StoredFile(
			url=result["secure_url"],
			public_id=result["public_id"],
			bytes=int(result.get("bytes") or len(data)),
			format=result.get("format"),
			width=result.get("width"),
			height=result.get("height"),
		)

	async def upload_pdf(self, data: bytes, filename: str, user_id: str) -> StoredFile:
		return await self._upload(
			data,
			filename,
			"raw",
			folder=f"{self.root_folder}/samples/{user_id}",
			public_id=f"sample_{int(time.time() * 1000)}.pdf",
			access_mode="public",
		)

	async def upload_image(self, data: bytes, filename: str, user_id: str, scope: str) -> StoredFile:
		return await self._upload(
			data,
			filename,
			"image",
			folder=f"{self.root_folder}/images/{user_id}/{scope}",
			transformation=_IMAGE_TRANSFORMATION,
		)

	async def upload_generated_pdf(self, data: bytes, user_id: str, worksheet_id: str) -> StoredFile:
		return await self._upload(
			data,
			f"worksheet_{worksheet_id}.pdf",
			"raw",
			folder=f"{self.root_folder}/generated/{user_id}",
			public_id=f"worksheet_{worksheet_id}_{int(time.time() * 1000)}.pdf",
			access_mode="public",
		)

	async def upload_university_asset(self, data: bytes, filename: str, resource_type: str) -> StoredFile:
		return await self._upload(
			data,
			filename,
			resource_type,
			folder=f"{self.root_folder}/universities",
			access_mode="public",
		)

	async def delete(self, public_id: str, resource_type: str = "raw") -> Dict[str, Any]:
		options = {**self._credentials(), "resource_type": resource_type}
		try:
			result = await run_in_threadpool(cloudinary.uploader.destroy, public_id, **options)
		except CloudinaryError as err:
			logger.error("Cloudinary delete error for %s: %s", public_id, err)
			raise StorageError("Failed to delete file from storage") from err
		logger.info("Deleted %s resource %s: %s", resource_type, public_id, result.get("result"))
		return result

	async def resource_exists(self, public_id: str, resource_type: str = "raw", delivery_type: str = "upload") -> bool:
		"""Ask the admin API whether an asset still exists.

		Only ``NotFound`` means gone. Other failures (auth, timeouts) report the
		asset as present so that a flaky API never hides templates.
		"""
		options = {**self._credentials(), "resource_type": resource_type, "type": delivery_type}
		try:
			await run_in_threadpool(cloudinary.api.resource, public_id, **options)
		except NotFound:
			return False
		except CloudinaryError as err:
			logger.error("Cloudinary check resource error: %s", err)
		return True

	def signed_url(self, public_id: str, resource_type: str = "raw", delivery_type: str = "authenticated") -> str:
		url, _ = cloudinary.utils.cloudinary_url(
			public_id,
			resource_type=resource_type,
			type=delivery_type,
			sign_url=True,
			force_version=False,
			**self._credentials(),
		)
		return url

	def private_download_url(
		self,
		public_id: str,
		fmt: str = "pdf",
		*,
		resource_type: str = "raw",
		delivery_type: str = "upload",
		expires_in: int = 3600,
	) -> str:
		return cloudinary.utils.private_download_url(
			public_id,
			fmt,
			resource_type=resource_type,
			type=delivery_type,
			expires_at=int(time.time()) + expires_in,
			**self._credentials(),
		)


_storage: Optional[CloudinaryStorage] = None


def get_storage() -> CloudinaryStorage:
	global _storage
	if _storage is None:
		_storage = CloudinaryStorage()
	return _storage


def verify_storage_config() -> bool:
	storage = get_storage()
	if not storage.configured:
		logger.warning("Cloudinary configuration incomplete. Please set environment variables.")
		return False
	logger.info("Cloudinary configured successfully")
	return True
