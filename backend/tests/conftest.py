import base64
import copy
import os

import pytest

from app import create_app
from config import Settings
from transcription import parse_transcription

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16

SAMPLE_TABLE = {
    "headers": [
        ["Roll No", "Name", "Prac 1", "Prac 2", "Prac 3"],
        ["", "", "04/01", "05/01", "06/01"],
    ],
    "data": [
        {"Roll No": "01", "Name": "Asha Rao", "Prac 1": "P", "Prac 2": "P", "Prac 3": None},
        {"Roll No": "02", "Name": "Vikram Shetty", "Prac 1": None, "Prac 2": "P", "Prac 3": None},
    ],
}


class FakeTranscriber:
    """Returns a canned table, or parses a canned reply the way Gemini output is parsed."""

    def __init__(self, table=None, reply=None, error=None):
        self.table = table
        self.reply = reply
        self.error = error
        self.calls = []

    def transcribe(self, image_path, mime_type):
        self.calls.append({"path": image_path, "mime_type": mime_type, "existed": os.path.exists(image_path)})
        if self.error is not None:
            raise self.error
        if self.reply is not None:
            return parse_transcription(self.reply)
        return copy.deepcopy(self.table)


@pytest.fixture
def png_base64():
    return base64.b64encode(PNG_BYTES).decode("ascii")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        gemini_api_key="test-key",
        output_dir=str(tmp_path / "downloads"),
        temp_dir=str(tmp_path / "tmp"),
    )


@pytest.fixture
def transcriber():
    return FakeTranscriber(table=SAMPLE_TABLE)


@pytest.fixture
def app(settings, transcriber):
    app = create_app(settings, transcriber=transcriber)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
