from __future__ import annotations
import base64
import json
import logging
import re
import time
from dataclasses import dataclass, field
from html import escape
from typing import Any, Dict, List, Optional

from .gemini_client import GeminiClient, GeminiError
from .models import DEFAULT_SECTIONS

logger = logging.getLogger(__name__)

ANALYSIS_CONFIG = {"temperature": 0.4, "topK": 32, "topP": 0.8, "maxOutputTokens": 2048}
GENERATION_CONFIG = {"temperature": 0.8, "topK": 40, "topP": 0.95, "maxOutputTokens": 8192}
REGENERATE_CONFIG = {"temperature": 0.9, "topK": 40, "topP": 0.95}

# Only the head of the sample goes to the model
ANALYSIS_TEXT_LIMIT = 3000


@dataclass
class StructureAnalysis:
	sections: List[str]
	style: str = "Formal Academic"
	level: str = "Post Graduate"
	confidence: str = "medium"
	error: Optional[str] = None


@dataclass
class InlineImage:
	data: bytes
	mime_type: str


@dataclass
class GenerationRequest:
	topic: str
	syllabus: str
	difficulty: str
	sections: List[str]
	university: str
	course: str
	semester: str
	subject: str
	level: str
	writing_depth: str = "medium"
	variation_level: str = "high"
	common_mistakes: List[str] = field(default_factory=list)
	additional_instructions: str = ""
	variation_seed: str = ""
	images: List[InlineImage] = field(default_factory=list)


def extract_json_object(text: str) -> Dict[str, Any]:
	try:
		data = json.loads(text)
		if isinstance(data, dict):
			return data
	except ValueError:
		pass
	code_block = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
	if code_block:
		try:
			data = json.loads(code_block.group(1))
			if isinstance(data, dict):
				return data
		except ValueError:
			pass
	first = text.find("{")
	last = text.rfind("}")
	if first != -1 and last > first:
		try:
			data = json.loads(text[first : last + 1])
			if isinstance(data, dict):
				return data
		except ValueError:
			pass
	raise GeminiError("AI did not return valid JSON")


def _analysis_prompt(pdf_text: str, university: str, course: str, subject: Optional[str]) -> str:
	return (
		"You are an academic document analyzer. Analyze this worksheet and extract its structure.\n\n"
		f"WORKSHEET CONTENT:\n{pdf_text[:ANALYSIS_TEXT_LIMIT]}\n\n"
		"CONTEXT:\n"
		f"- University: {university}\n"
		f"- Course: {course}\n"
		f"- Subject: {subject or 'Not specified'}\n\n"
		"Identify:\n"
		"1. All section headings in the order they appear\n"
		"2. The writing style (Formal Academic, Practical, Research-oriented)\n"
		"3. The academic level (Undergraduate, Postgraduate, Research)\n\n"
		"Return ONLY a JSON object with exactly these keys:\n"
		'{"sections": ["Section1", "Section2"], "style": "...", "level": "...", "confidence": "high|medium|low"}'
	)


def _worksheet_prompt(req: GenerationRequest) -> str:
	sections = ", ".join(f"{i + 1}. {s}" for i, s in enumerate(req.sections))
	if req.common_mistakes:
		mistakes = "\n".join(f"- {m}" for m in req.common_mistakes)
	else:
		mistakes = "- None recorded yet"
	image_block = ""
	if req.images:
		image_block = (
			"\nIMAGES ATTACHED:\n"
			f"{len(req.images)} image(s) accompany this request. Read any text in them, identify question parts (a, b, c), "
			"tables, diagrams, code or formulas, and integrate them: a question becomes questionParts, a table goes into "
			"dataset, a diagram is described in problemStatement, anything else is mentioned in additionalNotes.\n"
			'Describe what you found in "imageAnalysis" as {"type": "question|dataset|diagram|reference", '
			'"extractedText": "...", "detectedParts": ["a"], "integrationMethod": "..."}.\n'
		)
	extra = f"\nADDITIONAL INSTRUCTIONS FROM THE STUDENT:\n{req.additional_instructions}\n" if req.additional_instructions else ""
	return (
		f"You are an academic worksheet generator for {req.university}.\n"
		"Produce a publication-ready worksheet with clean structure and domain-appropriate content.\n\n"
		"CONTEXT:\n"
		f"Institution: {req.university}\n"
		f"Course: {req.course} | Semester: {req.semester}\n"
		f"Subject: {req.subject}\n"
		f"Academic level: {req.level}\n"
		f"Topic: {req.topic}\n"
		f"Difficulty: {req.difficulty}\n"
		f"Syllabus alignment: {req.syllabus}\n"
		f"Writing depth: {req.writing_depth}\n"
		f"Uniqueness seed: {req.variation_seed or int(time.time() * 1000)}\n"
		f"Variation level: {req.variation_level}\n"
		f"{extra}"
		"\nMULTI-PART QUESTIONS:\n"
		'If the topic contains parts such as "a. ... b. ...", "(a) ...", "Part A: ..." or "Question 1: ...", '
		"split them into questionParts, one entry per part, and give the whole a mainQuestionTitle.\n"
		f"{image_block}"
		f"\nREQUIRED SECTIONS (in this order): {sections}\n"
		"\nFORMATTING:\n"
		"- HTML fragments only (div, p, b, i, ul, ol, li, table, h4); no markdown.\n"
		"- Programming topics get complete runnable code with comments; spreadsheet topics get formulas and steps; "
		"engineering topics get calculations with units; management topics get frameworks and case details.\n"
		"- Keep every section inside the syllabus scope.\n"
		f"\nCommon mistakes to avoid:\n{mistakes}\n"
		"\nReturn ONLY valid JSON (no markdown fences) with this shape:\n"
		"{\n"
		'  "mainQuestionTitle": "Primary title of the question",\n'
		'  "questionParts": [{"part": "a", "title": "Short title", "description": "What part a asks"}],\n'
		'  "aim": "<div><p>...</p><ul><li>...</li></ul></div>",\n'
		'  "problemStatement": "<div><p>...</p></div>",\n'
		'  "dataset": "<div><table><thead><tr><th>Column</th></tr></thead><tbody><tr><td>Value</td></tr></tbody></table></div>",\n'
		'  "algorithm": "<ol><li>Step</li></ol>",\n'
		'  "objective": ["Objective 1", "Objective 2"],\n'
		'  "code": {"language": "python|java|cpp|excel|...", "source": "complete code", "explanation": "<div><ul><li>...</li></ul></div>"},\n'
		'  "output": "<div><ol><li>Expected output</li></ol></div>",\n'
		'  "conclusion": "<p>...</p>",\n'
		'  "learningOutcome": ["<b>Outcome 1:</b> ...", "<b>Outcome 2:</b> ..."],\n'
		'  "imageAnalysis": null,\n'
		'  "additionalNotes": "References or extra notes"\n'
		"}"
	)


def _regenerate_prompt(section: str, current: str, topic: str, syllabus: str) -> str:
	return (
		f'Regenerate ONLY the "{section}" section for this worksheet.\n\n'
		f"Topic: {topic}\n"
		f"Syllabus: {syllabus}\n\n"
		f'Current "{section}" content:\n{current}\n\n'
		"Requirements:\n"
		"- Make it different from the current version\n"
		"- Maintain academic quality\n"
		"- Stay within the syllabus scope\n"
		"- Return ONLY the new content text (not JSON)\n\n"
		f'Improved "{section}" content:'
	)


def question_title_html(main_title: str, parts: List[Dict[str, Any]]) -> str:
	if not main_title or not parts:
		return ""
	rendered = "".join(
		f"<p><b>{escape(str(p.get('part') or ''))}.</b> {escape(str(p.get('description') or ''))}</p>"
		for p in parts
	)
	return f"<div><h3>{escape(main_title)}</h3><div>{rendered}</div></div>"


def normalize_content(generated: Dict[str, Any]) -> Dict[str, Any]:
	"""Coerce a model response into the stored worksheet content shape."""
	code = generated.get("code")
	if isinstance(code, str):
		code = {"language": "plaintext", "source": code, "explanation": ""}
	elif isinstance(code, dict):
		code = {
			"language": code.get("language") or "plaintext",
			"source": code.get("source") or "",
			"explanation": code.get("explanation") or "",
		}
	else:
		code = {"language": "plaintext", "source": "", "explanation": ""}
	main_title = generated.get("mainQuestionTitle") or ""
	parts = [p for p in generated.get("questionParts") or [] if isinstance(p, dict)]
	return {
		"mainQuestionTitle": main_title,
		"questionParts": parts,
		"questionTitle": question_title_html(main_title, parts),
		"aim": generated.get("aim") or "",
		"problemStatement": generated.get("problemStatement") or "",
		"dataset": generated.get("dataset") or "",
		"algorithm": generated.get("algorithm") or "",
		"objective": generated.get("objective") or [],
		"code": code,
		"output": generated.get("output") or "",
		"conclusion": generated.get("conclusion") or "",
		"learningOutcome": generated.get("learningOutcome") or [],
		"imageAnalysis": generated.get("imageAnalysis") or None,
		"additionalNotes": generated.get("additionalNotes") or "",
	}


class WorksheetAI:
	"""Prompts and response handling for the worksheet generation model."""

	def __init__(self, model: Optional[str] = None) -> None:
		self.model = model

	def _client(self) -> GeminiClient:
		return GeminiClient(model=self.model)

	async def test_connection(self) -> Dict[str, str]:
		client = self._client()
		try:
			text = await client.generate('Say "Hello, WorksheetAI is connected!"')
			return {"message": text.strip(), "model": client.model}
		finally:
			await client.aclose()

	async def analyze_structure(
		self,
		pdf_text: str,
		*,
		university: str,
		course: str,
		subject: Optional[str] = None,
	) -> StructureAnalysis:
		"""Infer section order, style and level from a sample worksheet.

		Never raises: on any failure the default sections are returned with
		``confidence="low"`` and the error text attached.
		"""
		try:
			client = self._client()
			try:
				raw = await client.generate(
					_analysis_prompt(pdf_text, university, course, subject),
					generation_config=ANALYSIS_CONFIG,
				)
			finally:
				await client.aclose()
			data = extract_json_object(raw)
			sections = [str(s).strip() for s in data.get("sections") or [] if str(s).strip()]
			return StructureAnalysis(
				sections=sections,
				style=data.get("style") or "Formal Academic",
				level=data.get("level") or "Post Graduate",
				confidence=data.get("confidence") or "medium",
			)
		except GeminiError as err:
			logger.error("Structure analysis failed: %s", err)
			return StructureAnalysis(
				sections=list(DEFAULT_SECTIONS),
				confidence="low",
				error=str(err),
			)

	async def generate_worksheet(self, req: GenerationRequest) -> Dict[str, Any]:
		prompt = _worksheet_prompt(req)
		client = self._client()
		try:
			if req.images:
				parts: List[Dict[str, Any]] = [{"text": prompt}]
				for image in req.images:
					parts.append({
						"inline_data": {
							"mime_type": image.mime_type,
							"data": base64.b64encode(image.data).decode("ascii"),
						}
					})
				raw = await client.generate_multimodal(parts, generation_config=GENERATION_CONFIG, retry=True)
			else:
				raw = await client.generate(prompt, generation_config=GENERATION_CONFIG, retry=True)
		finally:
			await client.aclose()
		try:
			return extract_json_object(raw)
		except GeminiError as err:
			raise GeminiError("AI did not return valid JSON format") from err

	async def regenerate_section(self, section: str, current: str, *, topic: str, syllabus: str) -> str:
		client = self._client()
		try:
			text = await client.generate(
				_regenerate_prompt(section, current, topic, syllabus),
				generation_config=REGENERATE_CONFIG,
			)
		finally:
			await client.aclose()
		return text.strip()


_ai: Optional[WorksheetAI] = None


def get_worksheet_ai() -> WorksheetAI:
	global _ai
	if _ai is None:
		_ai = WorksheetAI()
	return _ai
