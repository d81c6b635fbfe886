import json
import logging
import os
import re
from time import perf_counter

import google.generativeai as genai

from errors import TranscriptionError

logger = logging.getLogger(__name__)

GENERATION_CONFIG = {
    "temperature": 0.7,
    "top_p": 0.95,
    "top_k": 64,
    "max_output_tokens": 65536,
    "response_mime_type": "text/plain",
}

EXTRACTION_PROMPT = """You are an expert at extracting tabular data from images. Analyze this table and follow these rules:

1. Column Structure:
   - The first 2 columns are ALWAYS: "Roll No" (a numeric or alphanumeric roll number) and "Name" (the full name).
   - The remaining columns represent attendance data, which are provided with two header rows:
       - The first header row contains the "Prac No" values.
       - The second header row contains handwritten date values in day/month format (e.g., "04/01").
   - Do NOT combine these header rows. Output them as two separate header rows:
       - The first header row lists "Roll No", "Name", followed by the Prac No values (e.g., "Prac 1", "Prac 2", etc.).
       - The second header row has empty values for the first two columns and then the matching date values (e.g., "04/01", "05/01", etc.).
   - Preserve the original column order from the image.

2. Data Extraction:
   - For the attendance cells, use "P" ONLY if the mark is clear and unambiguous.
   - Treat any faint marks, shadows, or doubtful cells as null.
   - Preserve empty cells as null.
   - There might be blank rows as well. Leave them blank, do not add "P" there.

3. Validation:
   - The final JSON must include both header rows and every data row must use the labels of the first header row as keys.
   - Reject any non-tabular data or annotations.

Return the extracted table data as a JSON object with EXACT structure, using two keys: "headers" and "data". For example:

{
  "headers": [
    ["Roll No", "Name", "Prac 1", "Prac 2", "Prac 3"],
    ["", "", "04/01", "05/01", "06/01"]
  ],
  "data": [
    {"Roll No": "01", "Name": "John Doe", "Prac 1": "P", "Prac 2": null, "Prac 3": "P"},
    {"Roll No": "02", "Name": "Jane Smith", "Prac 1": null, "Prac 2": "P", "Prac 3": "P"}
  ]
}
"""

FENCE_RE = re.compile(r"```json|```")


def strip_code_fences(text):
    return FENCE_RE.sub("", text or "").strip()


def parse_transcription(text):
    """Parse the model reply into a JSON value, tolerating Markdown code fences."""
    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise TranscriptionError(f"Failed to parse transcription as JSON: {exc}") from exc


class GeminiTranscriber:
    """Sends an attendance sheet image to Gemini and returns the table it reads."""

    def __init__(self, api_key, model_name, timeout=None, generation_config=None):
        genai.configure(api_key=api_key)
        self.model_name = model_name
        self.timeout = timeout
        self._model = genai.GenerativeModel(
            model_name=model_name,
            generation_config=generation_config or GENERATION_CONFIG,
        )

    @classmethod
    def from_settings(cls, settings):
        return cls(
            api_key=settings.gemini_api_key,
            model_name=settings.gemini_model,
            timeout=settings.gemini_timeout,
        )

    def _request_options(self):
        return {"timeout": self.timeout} if self.timeout else None

    def transcribe(self, image_path, mime_type):
        started_at = perf_counter()
        try:
            uploaded = genai.upload_file(
                image_path,
                mime_type=mime_type,
                display_name=os.path.basename(image_path),
            )
            chat = self._model.start_chat(
                history=[{"role": "user", "parts": [uploaded, EXTRACTION_PROMPT]}]
            )
            response = chat.send_message("", request_options=self._request_options())
            text = response.text
        except Exception as exc:
            raise TranscriptionError(f"Transcription request failed: {exc}") from exc

        logger.info(
            "Gemini transcription done model=%s reply_chars=%s duration_ms=%s",
            self.model_name,
            len(text or ""),
            round((perf_counter() - started_at) * 1000, 1),
        )
        return parse_transcription(text)
