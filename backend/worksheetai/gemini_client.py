from __future__ import annotations
import asyncio
import logging
import httpx
from typing import Any, Dict, List, Optional, Tuple
from .settings import settings

logger = logging.getLogger(__name__)

_TRANSIENT_STATUS = (429, 503)

AI_STUDIO_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
VERTEX_URL = (
	"https://{region}-aiplatform.googleapis.com/v1/projects/{project}"
	"/locations/{region}/publishers/google/models/{model}:generateContent"
)


class GeminiError(RuntimeError):
	def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
		super().__init__(message)
		self.status_code = status_code

	@property
	def transient(self) -> bool:
		return self.status_code in _TRANSIENT_STATUS or "overloaded" in str(self).lower()


def _endpoint(model: str) -> Tuple[str, bool]:
	"""URL for ``generateContent`` and whether the key goes in the query string."""
	if settings.gemini_provider == "vertex":
		# Vertex AI Express takes the key as a header
		return VERTEX_URL.format(
			region=settings.vertex_region,
			project=settings.vertex_project or "placeholder-project",
			model=model,
		), False
	return AI_STUDIO_URL.format(model=model), True


class GeminiClient:
	"""Async ``generateContent`` client with transient-error retry.

	Text prompts fall back to an OpenRouter chat model when the primary call
	fails for good and ``OPENROUTER_API_KEY`` is set.
	"""

	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise GeminiError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		url, self._auth_in_query = _endpoint(self.model)
		self.base_url = base_url or url
		self.max_retries = max(1, settings.gemini_max_retries)
		self.retry_delay = settings.gemini_retry_delay_seconds
		self._client = httpx.AsyncClient(timeout=settings.gemini_timeout_seconds, transport=transport)
		self._fallback_client: Optional[httpx.AsyncClient] = None
		if settings.openrouter_api_key:
			self._fallback_client = httpx.AsyncClient(timeout=settings.gemini_timeout_seconds, transport=transport)

	async def generate(
		self,
		prompt: str,
		*,
		generation_config: Optional[Dict[str, Any]] = None,
		retry: bool = False,
	) -> str:
		payload: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
		return await self._post_payload(
			payload,
			generation_config=generation_config,
			fallback_prompt=prompt,
			retry=retry,
		)

	async def generate_multimodal(
		self,
		parts: List[Dict[str, Any]],
		*,
		role: str = "user",
		generation_config: Optional[Dict[str, Any]] = None,
		retry: bool = False,
	) -> str:
		payload: Dict[str, Any] = {"contents": [{"role": role, "parts": parts}]}
		return await self._post_payload(
			payload,
			generation_config=generation_config,
			fallback_prompt=None,
			allow_fallback=False,
			retry=retry,
		)

	async def _post_payload(
		self,
		payload: Dict[str, Any],
		*,
		generation_config: Optional[Dict[str, Any]] = None,
		fallback_prompt: Optional[str],
		allow_fallback: bool = True,
		retry: bool = False,
	) -> str:
		if generation_config:
			payload = {**payload, "generationConfig": generation_config}
		attempts = self.max_retries if retry else 1
		delay = self.retry_delay
		last_error: Optional[GeminiError] = None
		for attempt in range(attempts):
			try:
				return await self._post_once(payload)
			except GeminiError as err:
				last_error = err
				if attempt == attempts - 1 or not err.transient:
					break
				logger.warning(
					"Gemini API overloaded (%s). Retrying in %.1fs (attempt %d/%d)",
					err.status_code, delay, attempt + 1, attempts,
				)
				await asyncio.sleep(delay)
				delay *= 2
		if not allow_fallback or self._fallback_client is None or fallback_prompt is None:
			raise last_error or GeminiError("Gemini call failed and no fallback configured")
		return await self._fallback_generate(fallback_prompt, last_error)

	async def _post_once(self, payload: Dict[str, Any]) -> str:
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		try:
			r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			raise GeminiError(
				f"Gemini request failed with HTTP {http_err.response.status_code}: {http_err.response.text[:300]}",
				status_code=http_err.response.status_code,
			) from http_err
		except httpx.RequestError as net_err:
			raise GeminiError(f"Gemini request failed: {net_err}") from net_err
		try:
			data = r.json()
			parts = data["candidates"][0]["content"]["parts"]
			return "".join(p.get("text", "") for p in parts)
		except (ValueError, KeyError, IndexError, TypeError) as err:
			raise GeminiError(f"Unexpected Gemini response: {r.text[:300]}") from err

	async def aclose(self) -> None:
		await self._client.aclose()
		if self._fallback_client is not None:
			await self._fallback_client.aclose()

	async def _fallback_generate(self, prompt: str, primary_error: Optional[Exception]) -> str:
		if self._fallback_client is None:
			raise primary_error or GeminiError("Fallback requested but OpenRouter is not configured")
		headers = {
			"Authorization": f"Bearer {settings.openrouter_api_key}",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}
		payload = {
			"model": settings.openrouter_model,
			"messages": [{"role": "user", "content": prompt}],
		}
		logger.info("Gemini failed (%s); falling back to OpenRouter model %s", primary_error, settings.openrouter_model)
		try:
			r = await self._fallback_client.post(settings.openrouter_base_url, headers=headers, json=payload)
			r.raise_for_status()
			return r.json()["choices"][0]["message"]["content"]
		except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as fallback_err:
			raise GeminiError(
				f"Gemini primary call failed ({primary_error}); fallback via OpenRouter also failed"
			) from fallback_err
