import logging
import os
import sys
import uuid
from time import perf_counter

from flask import Flask, Response, jsonify, request, send_from_directory
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from config import load_settings
from errors import ConversionError
from image_decoder import decode_image_payload, temporary_image_file
from sheet_emitter import (
    SPREADSHEET_MIMETYPE,
    SupabaseArchive,
    generate_filename,
    persist_workbook,
    prune_expired_outputs,
    write_workbook,
)
from table_normalizer import normalize_table
from transcription import GeminiTranscriber

logger = logging.getLogger(__name__)


def create_app(settings=None, transcriber=None, archive=None):
    """
    Build the Flask app.

    `transcriber` is anything with `transcribe(image_path, mime_type)`; it defaults
    to a GeminiTranscriber built from settings. `archive` mirrors saved sheets to
    Supabase and defaults to one only when Supabase is configured.
    """
    settings = settings or load_settings()
    if transcriber is None:
        transcriber = GeminiTranscriber.from_settings(settings)
    if archive is None and settings.supabase_enabled:
        archive = SupabaseArchive.from_settings(settings)

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = settings.max_content_length
    CORS(app)

    @app.errorhandler(ConversionError)
    def handle_conversion_error(e):
        if e.status_code >= 500:
            logger.error("Conversion failed: %s", e.message, exc_info=e)
        else:
            logger.warning("Rejected request: %s", e.message)
        return jsonify({"error": e.message}), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        logger.exception("Processing error")
        return jsonify({"error": str(e)}), 500

    @app.route("/extract_data", methods=["POST"])
    def extract_data():
        request_id = uuid.uuid4().hex[:8]
        started_at = perf_counter()

        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            body = {}
        raw_image = decode_image_payload(body.get("image"))
        logger.info(
            "Extract request accepted request_id=%s mime_type=%s image_bytes=%s",
            request_id,
            raw_image.mime_type,
            len(raw_image.data),
        )

        with temporary_image_file(raw_image, settings.temp_dir) as image_path:
            table = transcriber.transcribe(image_path, raw_image.mime_type)

        grid = normalize_table(table)
        content = write_workbook(grid)
        filename = generate_filename()
        persist_workbook(content, settings.output_dir, filename)

        try:
            prune_expired_outputs(settings.output_dir, settings.retention_days)
        except OSError as e:
            logger.warning("Pruning %s failed: %s", settings.output_dir, e)

        if archive is not None:
            try:
                archive.upload(content, filename)
            except Exception as e:
                # the local copy is authoritative
                logger.warning("Supabase upload failed request_id=%s: %s", request_id, e)

        logger.info(
            "Extract request finished request_id=%s rows=%s columns=%s filename=%s total_ms=%s",
            request_id,
            len(grid),
            len(grid[0]),
            filename,
            round((perf_counter() - started_at) * 1000, 1),
        )
        response = Response(content, mimetype=SPREADSHEET_MIMETYPE)
        response.headers["Content-Disposition"] = f'attachment; filename="{filename}"'
        return response

    @app.route("/api/download/<filename>", methods=["GET"])
    def download_file(filename):
        return send_from_directory(
            os.path.abspath(settings.output_dir),
            filename,
            as_attachment=True,
            download_name=filename,
            mimetype=SPREADSHEET_MIMETYPE,
        )

    @app.route("/api/health", methods=["GET"])
    def health_check():
        return jsonify({"status": "ok", "message": "API is running"})

    return app


def main():
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    app = create_app(settings)
    app.run(host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
