"""
Root conftest.py for WorksheetAI backend tests.

Configuration is taken from the environment when ``worksheetai.settings`` is
first imported, so the test database and signing key are set here, before
any test module imports the app.
"""

import io
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

_tmpdir = tempfile.mkdtemp(prefix="worksheetai-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{Path(_tmpdir) / 'test.db'}"
os.environ["AUTH_JWT_KEY"] = "test-signing-key"
os.environ["AUTH_JWT_ALGORITHM"] = "HS256"
os.environ["ADMIN_EMAIL"] = "Admin@Example.com"
os.environ["CLERK_SECRET_KEY"] = ""
os.environ["GEMINI_API_KEY"] = ""
os.environ["CLOUDINARY_CLOUD_NAME"] = ""

from fastapi.testclient import TestClient  # noqa: E402
from jose import jwt  # noqa: E402
from reportlab.lib.pagesizes import A4  # noqa: E402
from reportlab.pdfgen import canvas  # noqa: E402

from worksheetai.db import Base, engine  # noqa: E402
from worksheetai.main import app, limiter  # noqa: E402
from worksheetai.storage import StorageError, StoredFile, get_storage  # noqa: E402
from worksheetai.template_cache import template_cache  # noqa: E402
from worksheetai.worksheet_ai import StructureAnalysis, get_worksheet_ai  # noqa: E402


SAMPLE_LINES = [
	"Experiment 1",
	"Aim: To implement linear regression on a small housing dataset.",
	"Problem Statement: Predict house prices from area and number of rooms.",
	"Dataset: 50 rows with columns area, rooms and price collected from listings.",
	"Objective: Understand least squares fitting and model evaluation metrics.",
	"Code: a Python program using numpy to fit the model and report the error.",
	"Output: the fitted coefficients and the mean squared error on the test split.",
	"Learning Outcome: students can fit, evaluate and interpret a regression model.",
]


def make_pdf(lines: Optional[List[str]] = None) -> bytes:
	buf = io.BytesIO()
	c = canvas.Canvas(buf, pagesize=A4)
	y = A4[1] - 72
	for line in SAMPLE_LINES if lines is None else lines:
		c.drawString(72, y, line)
		y -= 18
	c.showPage()
	c.save()
	return buf.getvalue()


def make_png(color=(200, 30, 30)) -> bytes:
	from PIL import Image

	buf = io.BytesIO()
	Image.new("RGB", (40, 20), color).save(buf, format="PNG")
	return buf.getvalue()


# ============================================================================
# Fakes for external services
# ============================================================================


class FakeStorage:
	"""In-memory stand-in for the Cloudinary client."""

	configured = True

	def __init__(self) -> None:
		self.uploads: List[Dict[str, Any]] = []
		self.deleted: List[tuple] = []
		self.missing: set = set()
		self.fail_uploads = False

	async def _store(self, resource_type: str, folder: str, data: bytes) -> StoredFile:
		if self.fail_uploads:
			raise StorageError(f"Failed to upload {resource_type} to storage")
		n = len(self.uploads) + 1
		public_id = f"{folder}/file_{n}"
		self.uploads.append({"resource_type": resource_type, "public_id": public_id, "size": len(data)})
		return StoredFile(
			url=f"https://res.cloudinary.com/demo/{resource_type}/upload/v1/{public_id}",
			public_id=public_id,
			bytes=len(data),
		)

	async def upload_pdf(self, data, filename, user_id):
		return await self._store("raw", f"worksheet-ai/samples/{user_id}", data)

	async def upload_image(self, data, filename, user_id, scope):
		return await self._store("image", f"worksheet-ai/images/{user_id}/{scope}", data)

	async def upload_generated_pdf(self, data, user_id, worksheet_id):
		return await self._store("raw", f"worksheet-ai/generated/{user_id}", data)

	async def upload_university_asset(self, data, filename, resource_type):
		return await self._store(resource_type, "worksheet-ai/universities", data)

	async def delete(self, public_id, resource_type="raw"):
		self.deleted.append((public_id, resource_type))
		return {"result": "ok"}

	async def resource_exists(self, public_id, resource_type="raw", delivery_type="upload"):
		return public_id not in self.missing

	def signed_url(self, public_id, resource_type="raw", delivery_type="authenticated"):
		return f"https://res.cloudinary.com/demo/{resource_type}/{delivery_type}/s--signed--/{public_id}"

	def private_download_url(self, public_id, fmt="pdf", **kwargs):
		return f"https://api.cloudinary.com/v1_1/demo/raw/download?public_id={public_id}"


GENERATED = {
	"mainQuestionTitle": "Regression Lab",
	"questionParts": [
		{"part": "a", "title": "Fit", "description": "Fit the model"},
		{"part": "b", "title": "Evaluate", "description": "Report the MSE"},
	],
	"aim": "<div><p>To fit a <b>linear</b> model.</p></div>",
	"problemStatement": "<p>Predict prices.</p>",
	"dataset": "<table><tr><th>area</th><th>price</th></tr><tr><td>50</td><td>100</td></tr></table>",
	"objective": ["Understand least squares"],
	"code": "import numpy as np\nprint(np.zeros(3))",
	"output": "",
	"learningOutcome": ["<b>Outcome 1:</b> fitting"],
}


class FakeAI:
	def __init__(self) -> None:
		self.analysis = StructureAnalysis(sections=["Aim", "Theory", "Code"], style="Practical", level="Undergraduate", confidence="high")
		self.generated: Dict[str, Any] = dict(GENERATED)
		self.requests: List[Any] = []
		self.regenerated: List[tuple] = []
		self.error: Optional[Exception] = None

	async def test_connection(self):
		if self.error:
			raise self.error
		return {"message": "Hello, WorksheetAI is connected!", "model": "fake-model"}

	async def analyze_structure(self, pdf_text, *, university, course, subject=None):
		return self.analysis

	async def generate_worksheet(self, req):
		self.requests.append(req)
		if self.error:
			raise self.error
		return dict(self.generated)

	async def regenerate_section(self, section, current, *, topic, syllabus):
		self.regenerated.append((section, current))
		if self.error:
			raise self.error
		return f"New {section} content"


# ============================================================================
# Shared Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def fresh_db():
	Base.metadata.drop_all(bind=engine)
	Base.metadata.create_all(bind=engine)
	template_cache.invalidate()
	limiter.reset()
	yield
	app.dependency_overrides.clear()


@pytest.fixture
def storage():
	return FakeStorage()


@pytest.fixture
def ai():
	return FakeAI()


@pytest.fixture
def client(storage, ai):
	app.dependency_overrides[get_storage] = lambda: storage
	app.dependency_overrides[get_worksheet_ai] = lambda: ai
	return TestClient(app)


def make_token(sub: str = "user_1", email: Optional[str] = "student@example.com", name: Optional[str] = "Test Student", **claims) -> str:
	payload = {"sub": sub, **claims}
	if email:
		payload["email"] = email
	if name:
		payload["name"] = name
	return jwt.encode(payload, "test-signing-key", algorithm="HS256")


@pytest.fixture
def auth_headers():
	def _headers(**kwargs) -> Dict[str, str]:
		return {"Authorization": f"Bearer {make_token(**kwargs)}"}
	return _headers


@pytest.fixture
def student(client, auth_headers):
	"""A student with a completed profile; returns their auth headers."""
	headers = auth_headers()
	r = client.post(
		"/api/auth/sync-profile",
		json={"university": "Chandigarh University", "course": "MCA", "semester": "2", "uid": "24MCA001"},
		headers=headers,
	)
	assert r.status_code == 200
	return headers


@pytest.fixture
def admin(client, auth_headers):
	return auth_headers(sub="admin_1", email="admin@example.com", name="Admin")
