"""Wire codecs for snapshots.

Two wire forms exist:

- the verbose JSON document written by file export
  (``{contractions, notes, exportDate, version}``), and
- the compact positional form used for QR codes and share URLs
  (``{c: [[start_ms, end_ms, intensity], ...], n, d, v: 2}``).

Both decode through :func:`decode_document`, which dispatches on the ``v``
discriminator, converts to the verbose form, validates, and only then builds
a :class:`Snapshot`. Compact payloads are minified UTF-8 JSON in URL-safe
base64 without padding.

Example:
    payload = encode_payload(store.export_snapshot())
    snapshot = decode_payload(payload)
"""

import base64
import binascii
import json
import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import parse_qsl, unquote, urlencode, urlsplit, urlunsplit

from pydantic import ValidationError

from labortracker.errors import MalformedSnapshotError, PayloadTooLargeError
from labortracker.models import (
    COMPACT_FORMAT_VERSION,
    DEFAULT_INTENSITY,
    CompactSnapshotV2,
    Interval,
    Snapshot,
    VerboseSnapshot,
    WireSnapshot,
)
from labortracker.timeutil import from_epoch_ms, parse_timestamp, to_iso, utcnow
from labortracker.validate import validate, validate_intervals

logger = logging.getLogger(__name__)

# Maximum length of a transport string (QR payload or share URL)
MAX_PAYLOAD_CHARS = 2000

# Query parameters that carry an import payload, current first
PAYLOAD_PARAM = "d"
LEGACY_PAYLOAD_PARAM = "import"


# ---------------------------------------------------------------------------
# Snapshot <-> wire dictionaries
# ---------------------------------------------------------------------------


def to_verbose(snapshot: Snapshot) -> dict[str, Any]:
    """Serialize a snapshot to the verbose export document."""
    return VerboseSnapshot.from_snapshot(snapshot).to_wire()


def to_compact(snapshot: Snapshot) -> dict[str, Any]:
    """Serialize a snapshot to the compact positional form."""
    return CompactSnapshotV2.from_snapshot(snapshot).to_wire()


def parse_wire(data: Any) -> WireSnapshot:
    """Parse a decoded JSON document into one of the two wire forms.

    Args:
        data: Decoded JSON document.

    Returns:
        CompactSnapshotV2 when ``v == 2``, otherwise VerboseSnapshot.

    Raises:
        MalformedSnapshotError: If the document fails validation.
    """
    if not isinstance(data, Mapping):
        raise MalformedSnapshotError("not a JSON object")

    if data.get("v") == 2:
        try:
            return CompactSnapshotV2.model_validate(data)
        except ValidationError as e:
            raise MalformedSnapshotError(f"invalid compact payload ({e.error_count()} errors)") from None

    validate(data)
    try:
        return VerboseSnapshot.model_validate(data)
    except ValidationError as e:
        raise MalformedSnapshotError(f"invalid backup document ({e.error_count()} errors)") from None


def compact_to_verbose(compact: CompactSnapshotV2) -> VerboseSnapshot:
    """Expand a compact payload into the verbose form.

    Missing or zero end times become None and missing or zero intensities
    become the default rating.
    """
    contractions = []
    for item in compact.c:
        start, end, intensity = (list(item) + [None, None, None])[:3]
        contractions.append(
            {
                "startTime": start,
                "endTime": end or None,
                "intensity": intensity or DEFAULT_INTENSITY,
            }
        )
    try:
        export_date = to_iso(from_epoch_ms(compact.d))
    except (OverflowError, ValueError):
        raise MalformedSnapshotError("invalid export timestamp") from None

    verbose = VerboseSnapshot(
        contractions=contractions,
        notes=compact.n or "",
        export_date=export_date,
        version=COMPACT_FORMAT_VERSION,
    )
    validate(verbose.to_wire())
    return verbose


def intervals_from_wire(items: list[Any]) -> list[Interval]:
    """Build sorted intervals from verbose interval objects.

    Raises:
        MalformedSnapshotError: If any item fails validation.
    """
    validate_intervals(items)
    intervals = [
        Interval(
            start_time=parse_timestamp(item["startTime"]),
            end_time=parse_timestamp(item["endTime"]) if item.get("endTime") is not None else None,
            intensity=item.get("intensity") or DEFAULT_INTENSITY,
        )
        for item in items
    ]
    intervals.sort(key=lambda interval: interval.start_time)
    return intervals


def verbose_to_snapshot(verbose: VerboseSnapshot) -> Snapshot:
    """Build a Snapshot from a verbose document."""
    intervals = intervals_from_wire(verbose.contractions)
    try:
        exported_at = parse_timestamp(verbose.export_date)
    except ValueError:
        # The export date is informational only
        logger.warning(f"Unreadable exportDate {verbose.export_date!r}, using the current time")
        exported_at = utcnow()
    return Snapshot(
        intervals=intervals,
        notes=verbose.notes,
        exported_at=exported_at,
        format_version=str(verbose.version),
    )


def decode_document(data: Any) -> Snapshot:
    """Decode a JSON document in either wire form into a Snapshot.

    Raises:
        MalformedSnapshotError: If the document fails validation.
    """
    wire = parse_wire(data)
    if isinstance(wire, CompactSnapshotV2):
        wire = compact_to_verbose(wire)
    return verbose_to_snapshot(wire)


# ---------------------------------------------------------------------------
# Transport strings
# ---------------------------------------------------------------------------


def encode_payload(snapshot: Snapshot, limit: int = MAX_PAYLOAD_CHARS) -> str:
    """Encode a snapshot into a compact transport string.

    Args:
        snapshot: Snapshot to encode.
        limit: Maximum allowed length of the result.

    Returns:
        URL-safe base64 string.

    Raises:
        PayloadTooLargeError: If the result would exceed ``limit``.
    """
    compact = to_compact(snapshot)
    text = json.dumps(compact, separators=(",", ":"), ensure_ascii=False)
    try:
        raw = text.encode("utf-8")
    except UnicodeEncodeError:
        # Lone surrogates only survive as JSON escapes
        text = json.dumps(compact, separators=(",", ":"))
        raw = text.encode("ascii")
    payload = base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
    logger.debug(f"Compact payload: {len(text)} chars JSON, {len(payload)} chars encoded")
    if len(payload) > limit:
        raise PayloadTooLargeError(len(payload), limit)
    return payload


def _b64decode(text: str) -> bytes:
    # Query parsing turns '+' into ' '; accept both base64 alphabets
    cleaned = text.strip().replace(" ", "+").replace("-", "+").replace("_", "/")
    cleaned += "=" * (-len(cleaned) % 4)
    return base64.b64decode(cleaned, validate=True)


def _loads_payload(text: str) -> Any:
    try:
        raw = _b64decode(text).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raw = None

    # Query parsing has already percent-decoded the text once
    candidates = [raw, unquote(raw)] if raw is not None else []
    candidates.extend([text, unquote(text)])
    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise MalformedSnapshotError("payload could not be decoded")


def decode_payload(text: str) -> Snapshot:
    """Decode a transport string into a Snapshot.

    Accepts the compact base64 payload as well as the legacy encodings:
    base64 of URL-encoded JSON and plain URL-encoded verbose JSON.

    Raises:
        MalformedSnapshotError: If the payload cannot be decoded or validated.
    """
    return decode_document(_loads_payload(text))


def build_share_url(base_url: str, snapshot: Snapshot, limit: int = MAX_PAYLOAD_CHARS) -> str:
    """Build the self-referential import URL embedded in QR codes.

    Raises:
        PayloadTooLargeError: If the URL would exceed ``limit``.
    """
    payload = encode_payload(snapshot, limit=limit)
    parts = urlsplit(base_url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
             if k not in (PAYLOAD_PARAM, LEGACY_PAYLOAD_PARAM)]
    query.append((PAYLOAD_PARAM, payload))
    url = urlunsplit(parts._replace(query=urlencode(query), fragment=""))
    if len(url) > limit:
        raise PayloadTooLargeError(len(url), limit)
    return url


def extract_payload(url: str) -> str | None:
    """Get the import payload carried by a URL, if any."""
    params = dict(parse_qsl(urlsplit(url).query, keep_blank_values=True))
    return params.get(PAYLOAD_PARAM) or params.get(LEGACY_PAYLOAD_PARAM) or None


def strip_import_params(url: str) -> str:
    """Remove import parameters from a URL, keeping everything else."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
             if k not in (PAYLOAD_PARAM, LEGACY_PAYLOAD_PARAM)]
    return urlunsplit(parts._replace(query=urlencode(query)))


def decode_qr_text(text: str) -> Snapshot:
    """Decode the text read from a QR code.

    The text is either a share URL carrying a payload or, in older codes,
    a raw JSON document.

    Raises:
        MalformedSnapshotError: If nothing importable is found.
    """
    text = text.strip()
    if f"?{PAYLOAD_PARAM}=" in text or f"&{PAYLOAD_PARAM}=" in text:
        payload = extract_payload(text)
        if not payload:
            raise MalformedSnapshotError("no data found in QR code URL")
        return decode_payload(payload)

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        raise MalformedSnapshotError("QR code does not contain tracker data") from None
    return decode_document(data)
