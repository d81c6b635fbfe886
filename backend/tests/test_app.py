import io
import os

from openpyxl import load_workbook

from app import create_app
from conftest import FakeTranscriber
from errors import TranscriptionError
from sheet_emitter import SHEET_NAME, SPREADSHEET_MIMETYPE


def sheet_rows(content):
    sheet = load_workbook(io.BytesIO(content))[SHEET_NAME]
    return [list(row) for row in sheet.iter_rows(values_only=True)]


def test_extract_data_returns_spreadsheet(client, settings, transcriber, png_base64):
    response = client.post("/extract_data", json={"image": f"data:image/png;base64,{png_base64}"})

    assert response.status_code == 200
    assert response.mimetype == SPREADSHEET_MIMETYPE
    disposition = response.headers["Content-Disposition"]
    assert disposition.startswith('attachment; filename="data_')
    assert disposition.endswith('.xlsx"')

    rows = sheet_rows(response.data)
    assert len(rows) == 4
    assert rows[0] == ["Roll No", "Name", "Prac 1", "Prac 2", "Prac 3", "Attendance %"]
    assert rows[2][0] == "01"
    assert rows[2][-1] == "100.00%"
    assert rows[3][-1] == "50.00%"

    filename = disposition.split('"')[1]
    saved = os.path.join(settings.output_dir, filename)
    with open(saved, "rb") as f:
        assert f.read() == response.data

    call = transcriber.calls[0]
    assert call["mime_type"] == "image/png"
    assert call["existed"] is True
    assert not os.path.exists(call["path"])
    assert os.listdir(settings.temp_dir) == []


def test_raw_base64_without_prefix(client, png_base64):
    response = client.post("/extract_data", json={"image": png_base64})

    assert response.status_code == 200


def test_missing_image(client):
    response = client.post("/extract_data", json={})

    assert response.status_code == 400
    assert response.get_json() == {"error": "Image data is required"}


def test_body_that_is_not_json(client):
    response = client.post("/extract_data", data="image=abc", content_type="text/plain")

    assert response.status_code == 400
    assert response.get_json() == {"error": "Image data is required"}


def test_malformed_and_empty_images(client):
    response = client.post("/extract_data", json={"image": "data:image/png;base64,"})
    assert response.status_code == 400
    assert response.get_json() == {"error": "Invalid image format"}

    response = client.post("/extract_data", json={"image": ""})
    assert response.status_code == 400
    assert response.get_json() == {"error": "Empty image data"}


def test_unparseable_transcription(settings, png_base64):
    transcriber = FakeTranscriber(reply="```json\nI could not find a table.\n```")
    client = create_app(settings, transcriber=transcriber).test_client()

    response = client.post("/extract_data", json={"image": png_base64})

    assert response.status_code == 500
    assert response.get_json()["error"].startswith("Failed to parse transcription as JSON")
    assert not os.path.exists(transcriber.calls[0]["path"])
    assert os.listdir(settings.temp_dir) == []


def test_transcription_failure_keeps_server_serving(settings, png_base64):
    transcriber = FakeTranscriber(error=TranscriptionError("Transcription request failed: timeout"))
    client = create_app(settings, transcriber=transcriber).test_client()

    response = client.post("/extract_data", json={"image": png_base64})
    assert response.status_code == 500
    assert response.get_json() == {"error": "Transcription request failed: timeout"}
    assert os.listdir(settings.temp_dir) == []

    transcriber.error = None
    transcriber.table = [{"Roll No": "01", "Name": "A", "Lec 1": "P"}]
    response = client.post("/extract_data", json={"image": png_base64})
    assert response.status_code == 200
    assert sheet_rows(response.data)[1] == ["01", "A", "P", "100.00%"]


def test_unknown_table_shape(settings, png_base64):
    client = create_app(settings, transcriber=FakeTranscriber(table={"rows": []})).test_client()

    response = client.post("/extract_data", json={"image": png_base64})

    assert response.status_code == 500
    assert response.get_json() == {"error": "Invalid JSON format"}


def test_unexpected_errors_are_reported_as_json(settings, png_base64):
    client = create_app(settings, transcriber=FakeTranscriber(error=KeyError("boom"))).test_client()

    response = client.post("/extract_data", json={"image": png_base64})

    assert response.status_code == 500
    assert "boom" in response.get_json()["error"]


def test_archive_failure_does_not_fail_request(settings, png_base64):
    class BrokenArchive:
        def __init__(self):
            self.attempts = 0

        def upload(self, content, filename):
            self.attempts += 1
            raise RuntimeError("bucket missing")

    archive = BrokenArchive()
    client = create_app(settings, transcriber=FakeTranscriber(table=[{"Roll No": "01"}]), archive=archive).test_client()

    response = client.post("/extract_data", json={"image": png_base64})

    assert response.status_code == 200
    assert archive.attempts == 1


def test_download_saved_spreadsheet(client, png_base64):
    created = client.post("/extract_data", json={"image": png_base64})
    filename = created.headers["Content-Disposition"].split('"')[1]

    response = client.get(f"/api/download/{filename}")

    assert response.status_code == 200
    assert response.data == created.data


def test_download_missing_file(client):
    response = client.get("/api/download/data_19700101_000000.xlsx")

    assert response.status_code == 404
    assert "error" in response.get_json()


def test_wrong_method(client):
    response = client.get("/extract_data")

    assert response.status_code == 405
    assert "error" in response.get_json()


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.get_json() == {"status": "ok", "message": "API is running"}
