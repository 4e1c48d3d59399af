from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from jose import JWTError, jwt

from .settings import settings

logger = logging.getLogger(__name__)


class IdentityError(Exception):
	pass


@dataclass
class Identity:
	subject: str
	email: Optional[str] = None
	name: Optional[str] = None


def _claim_name(claims: Dict[str, Any]) -> Optional[str]:
	if claims.get("name"):
		return claims["name"]
	parts = [claims.get("given_name") or claims.get("first_name"), claims.get("family_name") or claims.get("last_name")]
	joined = " ".join(p for p in parts if p)
	return joined or None


def verify_token(token: str) -> Identity:
	"""Decode a session JWT issued by the identity provider."""
	options = {"verify_aud": bool(settings.auth_jwt_audience)}
	try:
		claims = jwt.decode(
			token,
			settings.auth_jwt_key,
			algorithms=[settings.auth_jwt_algorithm],
			audience=settings.auth_jwt_audience,
			issuer=settings.auth_jwt_issuer,
			options=options,
		)
	except JWTError as err:
		raise IdentityError(str(err)) from err
	subject = claims.get("sub")
	if not subject:
		raise IdentityError("token has no subject")
	return Identity(
		subject=str(subject),
		email=claims.get("email") or claims.get("email_address"),
		name=_claim_name(claims),
	)


async def fetch_profile(subject: str) -> Optional[Identity]:
	"""Look the user up in the provider's backend API, when one is configured."""
	if not settings.clerk_secret_key:
		return None
	url = f"{settings.clerk_api_url.rstrip('/')}/users/{subject}"
	headers = {"Authorization": f"Bearer {settings.clerk_secret_key}"}
	try:
		async with httpx.AsyncClient(timeout=15) as client:
			r = await client.get(url, headers=headers)
			r.raise_for_status()
			data = r.json()
	except (httpx.HTTPError, ValueError) as err:
		logger.warning("Identity provider lookup failed for %s: %s", subject, err)
		return None
	email = None
	addresses = data.get("email_addresses") or []
	primary = data.get("primary_email_address_id")
	for entry in addresses:
		if entry.get("id") == primary or email is None:
			email = entry.get("email_address")
	name = " ".join(p for p in (data.get("first_name"), data.get("last_name")) if p) or data.get("username")
	return Identity(subject=subject, email=email, name=name)
