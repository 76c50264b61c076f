"""Moving snapshots in and out of the store.

Every import path (backup file, share URL, scanned QR code) runs the same
pipeline: decode, validate, then hand back a confirmation token whose summary
the presentation layer shows before calling ``store.confirm``.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from labortracker.codec import (
    MAX_PAYLOAD_CHARS,
    build_share_url,
    decode_document,
    decode_payload,
    decode_qr_text,
    extract_payload,
    strip_import_params,
    to_verbose,
)
from labortracker.errors import MalformedSnapshotError
from labortracker.models import Snapshot
from labortracker.store import ConfirmationToken, EventLogStore

logger = logging.getLogger(__name__)

EXPORT_PREFIX = "labor-tracker-backup"


def export_filename(now: datetime) -> str:
    """Backup file name with a sortable UTC timestamp."""
    stamp = now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
    return f"{EXPORT_PREFIX}-{stamp}.json"


def write_export(store: EventLogStore, directory: str | Path) -> Path:
    """Write the store's current snapshot as a backup file.

    Args:
        store: Store to export.
        directory: Target directory, created if missing.

    Returns:
        Path of the written file.
    """
    snapshot = store.export_snapshot()
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / export_filename(snapshot.exported_at)
    path.write_text(json.dumps(to_verbose(snapshot), indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info(f"Exported {len(snapshot.intervals)} contractions to {path}")
    return path


def read_backup(path: str | Path) -> Snapshot:
    """Read and validate a backup file.

    Raises:
        MalformedSnapshotError: If the file is not valid JSON or fails validation.
        OSError: If the file cannot be read.
    """
    content = Path(path).read_text(encoding="utf-8")
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        raise MalformedSnapshotError("file is not valid JSON") from None
    return decode_document(data)


def request_file_import(store: EventLogStore, path: str | Path) -> ConfirmationToken:
    """Start importing a backup file.

    Raises:
        MalformedSnapshotError: If the file fails validation. State is unchanged.
    """
    return store.request_import(read_backup(path), source="file")


def request_qr_import(store: EventLogStore, text: str) -> ConfirmationToken:
    """Start importing the text read from a QR code.

    Raises:
        MalformedSnapshotError: If the code holds no valid tracker data.
    """
    return store.request_import(decode_qr_text(text), source="QR code")


@dataclass(frozen=True)
class UrlImport:
    """Outcome of checking an address for an import payload.

    Attributes:
        cleaned_url: The address with import parameters removed.
        token: Confirmation for a valid payload, None otherwise.
        error: Why the payload was rejected, if it was.
    """

    cleaned_url: str
    token: ConfirmationToken | None = None
    error: MalformedSnapshotError | None = None


def check_url_import(store: EventLogStore, url: str) -> UrlImport:
    """Look for an import payload in an address.

    The cleaned address is returned whether or not the payload was valid, so
    the caller can always drop the parameters from view.
    """
    payload = extract_payload(url)
    if payload is None:
        return UrlImport(cleaned_url=url)

    cleaned = strip_import_params(url)
    try:
        snapshot = decode_payload(payload)
    except MalformedSnapshotError as e:
        logger.warning(f"Rejected URL import: {e.reason}")
        return UrlImport(cleaned_url=cleaned, error=e)
    return UrlImport(cleaned_url=cleaned, token=store.request_import(snapshot, source="shared link"))


def share_url(store: EventLogStore, base_url: str, limit: int = MAX_PAYLOAD_CHARS) -> str:
    """Build a share URL carrying the store's current snapshot.

    Raises:
        PayloadTooLargeError: If the URL would exceed ``limit``.
    """
    return build_share_url(base_url, store.export_snapshot(), limit=limit)
