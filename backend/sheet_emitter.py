import io
import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pandas as pd
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE

from errors import SerializationError

logger = logging.getLogger(__name__)

SPREADSHEET_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
SHEET_NAME = "Data"


def generate_filename(now=None):
    now = now or datetime.now(timezone.utc)
    return f"data_{now.strftime('%Y%m%d_%H%M%S')}.xlsx"


def _cell_value(value):
    if value is None or isinstance(value, (int, float, bool)):
        return value
    if not isinstance(value, str):
        value = json.dumps(value, ensure_ascii=False)
    return ILLEGAL_CHARACTERS_RE.sub("", value)


def _store_strings_as_text(worksheet):
    # openpyxl turns strings starting with "=" into formulas
    for row in worksheet.iter_rows():
        for cell in row:
            if isinstance(cell.value, str):
                cell.data_type = "s"


def write_workbook(grid):
    """Serialize the grid row by row into xlsx bytes. Strings are always written as text."""
    rows = [[_cell_value(value) for value in row] for row in grid]
    try:
        df = pd.DataFrame(rows, dtype=object)
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name=SHEET_NAME, header=False, index=False)
            _store_strings_as_text(writer.sheets[SHEET_NAME])
    except Exception as exc:
        raise SerializationError(f"Failed to write spreadsheet: {exc}") from exc
    return buffer.getvalue()


def persist_workbook(content, output_dir, filename):
    path = Path(output_dir) / filename
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
    except OSError as exc:
        raise SerializationError(f"Failed to save spreadsheet: {exc}") from exc
    logger.info("Saved spreadsheet %s (%s bytes)", path, len(content))
    return path


def prune_expired_outputs(output_dir, retention_days, now=None):
    """Delete saved spreadsheets older than retention_days. Returns the removed paths."""
    if not retention_days or retention_days <= 0:
        return []
    directory = Path(output_dir)
    if not directory.is_dir():
        return []

    now = now or datetime.now(timezone.utc)
    cutoff = (now - timedelta(days=retention_days)).timestamp()
    removed = []
    for path in directory.glob("*.xlsx"):
        try:
            if path.stat().st_mtime < cutoff:
                path.unlink()
                removed.append(path)
        except FileNotFoundError:
            # another request pruned it first
            continue
    if removed:
        logger.info("Pruned %s spreadsheet(s) older than %s days from %s", len(removed), retention_days, directory)
    return removed


class SupabaseArchive:
    """Mirrors saved spreadsheets into a Supabase storage bucket."""

    def __init__(self, client, bucket):
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_settings(cls, settings):
        from supabase import create_client

        return cls(create_client(settings.supabase_url, settings.supabase_key), settings.supabase_bucket)

    def storage_path(self, filename, now=None):
        now = now or datetime.now(timezone.utc)
        return f"{now:%Y}/{now:%m}/{filename}"

    def upload(self, content, filename, now=None):
        storage_path = self.storage_path(filename, now)
        self.client.storage.from_(self.bucket).upload(
            path=storage_path,
            file=content,
            file_options={"content-type": SPREADSHEET_MIMETYPE},
        )
        public_url = self.client.storage.from_(self.bucket).get_public_url(storage_path)
        logger.info("Uploaded spreadsheet to Supabase bucket=%s path=%s", self.bucket, storage_path)
        return public_url

