# RJ Auto Metadata
# Copyright (C) 2025 Riiicil
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

# src/metadata/csv_exporter.py
import os
import csv
import asyncio
import threading
from src.api.errors import MetadataWriteError
from src.utils.file_utils import classify_media
from src.utils.logging import log_message

CSV_SUBFOLDER = "CSV"
CSV_FILENAME = "metadata.csv"
CSV_HEADER = ["Filename", "Title", "Description", "Keywords"]
KEYWORD_SEPARATOR = ", "


def journal_path(success_dir):
    return os.path.join(success_dir, CSV_SUBFOLDER, CSV_FILENAME)


def format_row(filename, metadata):
    if hasattr(metadata, "as_metadata"):
        metadata = metadata.as_metadata()
    keywords = metadata.get("keywords") or []
    if isinstance(keywords, str):
        keywords_text = keywords
    else:
        keywords_text = KEYWORD_SEPARATOR.join(keywords)
    return [filename, metadata.get("title") or "", metadata.get("description") or "", keywords_text]


def _writer(f):
    return csv.writer(f, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")


def _has_content(metadata):
    return bool(metadata and (metadata.get("title") or metadata.get("description") or metadata.get("keywords")))


class CSVJournal:
    """
    success/CSV/metadata.csv, appended once per successful file and rewritten
    from the files actually present in success/ when a batch ends.
    """

    def __init__(self):
        self._lock = threading.Lock()

    def append_row(self, success_dir, filename, metadata):
        path = journal_path(success_dir)
        row = format_row(filename, metadata)
        with self._lock:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            write_header = not os.path.exists(path) or os.path.getsize(path) == 0
            with open(path, "a", encoding="utf-8", newline="") as f:
                writer = _writer(f)
                if write_header:
                    writer.writerow(CSV_HEADER)
                writer.writerow(row)
                f.flush()
                os.fsync(f.fileno())
        log_message(f"Metadata for {filename} appended to {CSV_FILENAME}", "debug")
        return path

    def read_rows(self, success_dir):
        """Existing journal rows keyed by filename; the last row for a name wins."""
        path = journal_path(success_dir)
        rows = {}
        if not os.path.exists(path):
            return rows
        with open(path, "r", encoding="utf-8", newline="") as f:
            reader = csv.reader(f)
            for index, row in enumerate(reader):
                if index == 0 and row == CSV_HEADER:
                    continue
                if len(row) < 4 or not row[0]:
                    continue
                rows[row[0]] = {
                    "title": row[1],
                    "description": row[2],
                    "keywords": [k.strip() for k in row[3].split(",") if k.strip()],
                }
        return rows

    def _write_all(self, success_dir, entries):
        path = journal_path(success_dir)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        temp_path = path + ".tmp"
        with self._lock:
            with open(temp_path, "w", encoding="utf-8", newline="") as f:
                writer = _writer(f)
                writer.writerow(CSV_HEADER)
                for filename, metadata in entries:
                    writer.writerow(format_row(filename, metadata))
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, path)
        return path

    async def rebuild(self, success_dir, sink=None):
        """
        Rewrite the journal from the files in `success_dir`, sorted by name
        case-insensitively. Embedded metadata is preferred for files the sink
        can embed into; every other file, and any file whose metadata cannot
        be read, keeps its previous journal row. A file with neither is skipped.
        Returns the number of rows written.
        """
        if not os.path.isdir(success_dir):
            return 0
        names = [
            name for name in os.listdir(success_dir)
            if os.path.isfile(os.path.join(success_dir, name))
            and not name.lower().endswith(".csv")
            and not name.startswith(".")
        ]
        names.sort(key=str.casefold)
        previous = await asyncio.to_thread(self.read_rows, success_dir)

        entries = []
        for name in names:
            metadata = None
            embeddable = sink is not None and sink.supports_embedding(classify_media(name))
            if embeddable and getattr(sink, "available", True):
                try:
                    metadata = await sink.read(os.path.join(success_dir, name))
                except (MetadataWriteError, OSError) as e:
                    log_message(f"Could not read metadata from {name}: {e}", "warning")
            if not _has_content(metadata):
                metadata = previous.get(name)
            if not _has_content(metadata):
                log_message(f"Skipping {name} in CSV: no metadata found", "warning")
                continue
            entries.append((name, metadata))

        path = await asyncio.to_thread(self._write_all, success_dir, entries)
        log_message(f"CSV rebuilt with {len(entries)} entries: {path}", "info")
        return len(entries)
