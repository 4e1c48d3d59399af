"""
Unit tests for the service layer: job queue, suggestion cache, AI client
retries and responses, storage and token verification.
"""

import asyncio
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from cloudinary.exceptions import Error as CloudinaryError
from cloudinary.exceptions import NotFound
from jose import jwt

from worksheetai.gemini_client import GeminiClient, GeminiError
from worksheetai.identity import IdentityError, verify_token
from worksheetai.job_queue import JobQueue, JobTimeout
from worksheetai.models import DEFAULT_SECTIONS
from worksheetai.settings import settings
from worksheetai.storage import CloudinaryStorage, StorageError, is_storage_url, public_id_from_url
from worksheetai.template_cache import TemplateCache, cache_key
from worksheetai.worksheet_ai import WorksheetAI, extract_json_object, normalize_content, question_title_html


class TestJobQueue:
	def test_limits_concurrency(self):
		queue = JobQueue("test", concurrency=2, timeout=5)
		peak = 0

		async def job():
			nonlocal peak
			peak = max(peak, queue.active)
			await asyncio.sleep(0.01)
			return queue.active

		async def main():
			return await asyncio.gather(*(queue.run(job()) for _ in range(6)))

		results = asyncio.run(main())
		assert len(results) == 6
		assert peak == 2
		assert queue.stats() == {"name": "test", "waiting": 0, "active": 0, "concurrency": 2}

	def test_timeout_raises(self):
		queue = JobQueue("test", concurrency=1, timeout=0.01)

		async def main():
			await queue.run(asyncio.sleep(1))

		with pytest.raises(JobTimeout):
			asyncio.run(main())
		assert queue.active == 0

	def test_job_errors_propagate(self):
		queue = JobQueue("test", concurrency=1)

		async def boom():
			raise GeminiError("bad")

		with pytest.raises(GeminiError):
			asyncio.run(queue.run(boom()))


class TestTemplateCache:
	def test_entries_expire(self):
		now = [1000.0]
		cache = TemplateCache(60, clock=lambda: now[0])
		cache.set("k", [{"_id": "1"}])
		now[0] += 59
		assert cache.get("k") == [{"_id": "1"}]
		now[0] += 1
		assert cache.get("k") is None

	def test_invalidate(self):
		cache = TemplateCache(60)
		cache.set("a", [])
		cache.set("b", [])
		cache.invalidate("a")
		assert cache.get("a") is None
		assert cache.get("b") == []
		cache.invalidate()
		assert cache.get("b") is None

	def test_key_format(self):
		assert cache_key("abc") == "worksheet_template_cache_abc"


class TestAiResponses:
	def test_json_direct(self):
		assert extract_json_object('{"a": 1}') == {"a": 1}

	def test_json_fenced(self):
		assert extract_json_object('Here:\n```json\n{"a": 2}\n```\nthanks') == {"a": 2}

	def test_json_embedded(self):
		assert extract_json_object('Sure! {"a": {"b": 3}} hope it helps') == {"a": {"b": 3}}

	def test_json_missing(self):
		with pytest.raises(GeminiError):
			extract_json_object("no json here")

	def test_normalize_string_code(self):
		content = normalize_content({"code": "print(1)"})
		assert content["code"] == {"language": "plaintext", "source": "print(1)", "explanation": ""}
		assert content["questionTitle"] == ""
		assert content["objective"] == []

	def test_question_title_escapes(self):
		html = question_title_html("Q <1>", [{"part": "a", "description": "x & y"}])
		assert "<h3>Q &lt;1&gt;</h3>" in html
		assert "<b>a.</b> x &amp; y" in html

	def test_analysis_degrades_on_failure(self):
		ai = WorksheetAI()
		failing = AsyncMock(side_effect=GeminiError("quota"))

		class Client:
			model = "m"
			generate = failing
			aclose = AsyncMock()

		with patch.object(WorksheetAI, "_client", lambda self: Client()):
			result = asyncio.run(ai.analyze_structure("text", university="U", course="C"))
		assert result.sections == list(DEFAULT_SECTIONS)
		assert result.confidence == "low"
		assert result.error == "quota"

	def test_analysis_parses_response(self):
		ai = WorksheetAI()

		class Client:
			model = "m"
			generate = AsyncMock(return_value='```json\n{"sections": ["Aim", " ", "Code"], "confidence": "high"}\n```')
			aclose = AsyncMock()

		with patch.object(WorksheetAI, "_client", lambda self: Client()):
			result = asyncio.run(ai.analyze_structure("text", university="U", course="C"))
		assert result.sections == ["Aim", "Code"]
		assert result.style == "Formal Academic"
		assert result.confidence == "high"

	def test_transient_errors(self):
		assert GeminiError("x", status_code=429).transient
		assert GeminiError("The model is overloaded").transient
		assert not GeminiError("x", status_code=400).transient


class TestGeminiClient:
	def _ok(self, text):
		return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})

	def _run(self, statuses, *, fallback=None, retry=True, monkeypatch):
		"""Drive one ``generate`` call against a scripted transport.

		Returns the result (or raised error), the Gemini status codes served
		and the backoff delays slept.
		"""
		monkeypatch.setattr(settings, "openrouter_api_key", "or-key" if fallback else None)
		served = []
		sleeps = []

		def handler(request):
			if request.url.host == "openrouter.ai":
				return fallback
			status = statuses[len(served)]
			served.append(status)
			if status == 200:
				return self._ok("ok")
			return httpx.Response(status, text="The model is overloaded" if status == 503 else "bad request")

		async def fake_sleep(delay):
			sleeps.append(delay)

		async def main():
			client = GeminiClient("test-key", transport=httpx.MockTransport(handler))
			try:
				return await client.generate("hi", retry=retry)
			except GeminiError as err:
				return err
			finally:
				await client.aclose()

		monkeypatch.setattr("worksheetai.gemini_client.asyncio.sleep", fake_sleep)
		return asyncio.run(main()), served, sleeps

	def test_transient_errors_retry_with_backoff(self, monkeypatch):
		result, served, sleeps = self._run([503, 503, 200], monkeypatch=monkeypatch)
		assert result == "ok"
		assert served == [503, 503, 200]
		assert sleeps == [2.0, 4.0]

	def test_retries_stop_after_five_attempts(self, monkeypatch):
		result, served, sleeps = self._run([429] * 6, monkeypatch=monkeypatch)
		assert isinstance(result, GeminiError)
		assert result.status_code == 429
		assert len(served) == 5
		assert sleeps == [2.0, 4.0, 8.0, 16.0]

	def test_no_retry_unless_requested(self, monkeypatch):
		result, served, sleeps = self._run([503, 200], retry=False, monkeypatch=monkeypatch)
		assert isinstance(result, GeminiError)
		assert served == [503]
		assert sleeps == []

	def test_non_transient_error_goes_to_fallback(self, monkeypatch):
		fallback = httpx.Response(200, json={"choices": [{"message": {"content": "from fallback"}}]})
		result, served, sleeps = self._run([400], fallback=fallback, monkeypatch=monkeypatch)
		assert result == "from fallback"
		assert served == [400]
		assert sleeps == []

	def test_fallback_failure_raises(self, monkeypatch):
		result, served, _ = self._run([400], fallback=httpx.Response(500, text="down"), monkeypatch=monkeypatch)
		assert isinstance(result, GeminiError)
		assert "fallback via OpenRouter also failed" in str(result)


class TestStorage:
	storage = CloudinaryStorage("demo", "key", "secret")

	def test_public_id_from_url(self):
		url = "https://res.cloudinary.com/demo/raw/upload/v123/worksheet-ai/samples/my%20file.pdf"
		assert is_storage_url(url)
		assert public_id_from_url(url) == "worksheet-ai/samples/my file.pdf"
		assert public_id_from_url("https://example.com/x.pdf") is None

	def test_signed_url_shape(self):
		url = self.storage.signed_url("folder/doc.pdf")
		assert url.startswith("https://res.cloudinary.com/demo/raw/authenticated/s--")
		assert url.endswith("--/folder/doc.pdf")

	def test_private_download_url(self):
		url = self.storage.private_download_url("folder/doc", "pdf")
		parsed = urlparse(url)
		assert parsed.path == "/v1_1/demo/raw/download"
		query = parse_qs(parsed.query)
		assert query["public_id"] == ["folder/doc"]
		assert query["format"] == ["pdf"]
		assert query["api_key"] == ["key"]
		assert "signature" in query

	def test_upload_maps_result(self):
		result = {"secure_url": "https://res.cloudinary.com/demo/image/upload/v1/x.png", "public_id": "x", "bytes": 42, "width": 10, "height": 5}
		with patch("worksheetai.storage.cloudinary.uploader.upload", return_value=result) as upload:
			stored = asyncio.run(self.storage.upload_image(b"png", "x.png", "u1", "headers"))
		assert stored.public_id == "x"
		assert stored.bytes == 42
		options = upload.call_args.kwargs
		assert options["folder"] == "worksheet-ai/images/u1/headers"
		assert options["resource_type"] == "image"
		assert options["api_secret"] == "secret"

	def test_upload_errors_become_storage_errors(self):
		with patch("worksheetai.storage.cloudinary.uploader.upload", side_effect=CloudinaryError("boom")):
			with pytest.raises(StorageError, match="Failed to upload raw"):
				asyncio.run(self.storage.upload_pdf(b"%PDF", "a.pdf", "u1"))

	def test_resource_exists_only_false_on_not_found(self):
		with patch("worksheetai.storage.cloudinary.api.resource", side_effect=NotFound("gone")):
			assert asyncio.run(self.storage.resource_exists("a")) is False
		with patch("worksheetai.storage.cloudinary.api.resource", side_effect=CloudinaryError("auth")):
			assert asyncio.run(self.storage.resource_exists("a")) is True

	def test_unconfigured_storage(self):
		storage = CloudinaryStorage("", "", "")
		assert not storage.configured
		with pytest.raises(StorageError):
			storage.signed_url("a")


class TestVerifyToken:
	def test_valid_token(self):
		token = jwt.encode({"sub": "u1", "email": "a@b.c", "first_name": "Ada", "last_name": "L"}, "test-signing-key", algorithm="HS256")
		identity = verify_token(token)
		assert identity.subject == "u1"
		assert identity.email == "a@b.c"
		assert identity.name == "Ada L"

	def test_token_without_subject(self):
		token = jwt.encode({"email": "a@b.c"}, "test-signing-key", algorithm="HS256")
		with pytest.raises(IdentityError):
			verify_token(token)

	def test_garbage_token(self):
		with pytest.raises(IdentityError):
			verify_token("not-a-jwt")
