"""Read uploaded CSV files into validated row objects.

Structural problems (undecodable bytes, no header, missing required
columns) fail the whole upload. Problems with individual rows are collected
so the caller can report all of them at once.
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from fastapi import UploadFile
from pydantic import ValidationError

from school_backend.core.exceptions import CsvFormatError

logger = logging.getLogger(__name__)


@dataclass
class CsvIngestResult:
    rows: list[Any] = field(default_factory=list)
    rejected: list[dict[str, Any]] = field(default_factory=list)


def read_upload(upload: UploadFile) -> str:
    data = upload.file.read()
    try:
        content = data.decode('utf-8-sig')
    except UnicodeDecodeError as exc:
        raise CsvFormatError('Uploaded file must be UTF-8 encoded CSV text.') from exc

    if not content.strip():
        raise CsvFormatError('Uploaded CSV file is empty.')
    return content


def _row_errors(exc: Exception) -> list[str]:
    if isinstance(exc, ValidationError):
        messages = []
        for error in exc.errors():
            location = '.'.join(str(part) for part in error.get('loc', ()))
            message = error.get('msg', 'Invalid value')
            messages.append(f'{location}: {message}' if location else message)
        return messages
    return [str(exc)]


def _clean_row(raw: dict) -> dict[str, str | None]:
    cleaned = {}
    for key, value in raw.items():
        if key is None:
            continue
        cleaned[key.strip()] = value.strip() if isinstance(value, str) else value
    return cleaned


def parse_csv(
    content: str,
    row_handler: Callable[[dict[str, str | None]], Any],
    required_columns: Iterable[str] = (),
) -> CsvIngestResult:
    """Parse CSV ``content`` and map every data row through ``row_handler``.

    ``row_handler`` receives the row as a dict of stripped strings (``None``
    for cells missing from a short row) and returns the parsed row object.
    Raising ``ValueError`` (pydantic's ``ValidationError`` included) rejects
    that row only.
    """
    reader = csv.DictReader(io.StringIO(content))
    try:
        header = reader.fieldnames
    except csv.Error as exc:
        raise CsvFormatError(f'Could not read CSV header: {exc}') from exc

    if not header:
        raise CsvFormatError('CSV file must start with a header row.')

    columns = {column.strip() for column in header if column}
    missing = [column for column in required_columns if column not in columns]
    if missing:
        raise CsvFormatError(
            f'CSV header is missing required column(s): {", ".join(missing)}',
            missingColumns=missing,
        )

    result = CsvIngestResult()
    try:
        for raw in reader:
            line = reader.line_num
            row = _clean_row(raw)
            if raw.get(None):
                result.rejected.append(
                    {'line': line, 'row': row, 'errors': ['Row has more values than the header has columns.']}
                )
                continue
            if not any(row.values()):
                continue

            try:
                result.rows.append(row_handler(row))
            except ValueError as exc:
                result.rejected.append({'line': line, 'row': row, 'errors': _row_errors(exc)})
    except csv.Error as exc:
        raise CsvFormatError(f'Could not parse CSV at line {reader.line_num}: {exc}') from exc

    if not result.rows and not result.rejected:
        raise CsvFormatError('CSV file has no data rows.')

    logger.info('Parsed CSV upload: %d accepted row(s), %d rejected row(s).', len(result.rows), len(result.rejected))
    return result
