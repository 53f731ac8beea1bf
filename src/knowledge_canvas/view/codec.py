"""ViewBlob codec.

The backend stores the view state as one opaque string field: base64 of
the UTF-8 JSON produced by ViewState.to_dict(). Some backends return the
field list-valued; the first element is the blob.

    >>> blob = encode_view_state(ViewState(zoom=1.5))
    >>> decode_view_state(blob).zoom
    1.5
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any

from ..exceptions import ViewDecodeError
from .state import ViewState

logger = logging.getLogger(__name__)


def encode_view_state(state: ViewState) -> str:
    """Encode a view state as a transportable blob."""
    payload = json.dumps(state.to_dict(), separators=(",", ":"), sort_keys=True)
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def _blob_text(blob: Any) -> str | None:
    """Extract the blob string from a raw field value."""
    if blob is None:
        return None
    if isinstance(blob, (list, tuple)):
        if not blob:
            return None
        blob = blob[0]
    if not isinstance(blob, str):
        raise ViewDecodeError(f"View blob must be a string, got {type(blob).__name__}")
    return blob or None


def decode_view_state(blob: Any) -> ViewState:
    """Decode a blob into a view state.

    An absent or empty blob decodes to an empty state.

    Raises:
        ViewDecodeError: If the blob is not base64 JSON of the expected shape
    """
    text = _blob_text(blob)
    if text is None:
        return ViewState()

    try:
        raw = base64.b64decode(text, validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ViewDecodeError("View blob is not base64-encoded JSON", cause=e)

    try:
        return ViewState.from_dict(data)
    except (ValueError, TypeError, AttributeError) as e:
        raise ViewDecodeError("View blob has an unexpected shape", cause=e)


def decode_view_state_or_empty(blob: Any) -> ViewState:
    """Decode a blob, treating any decode failure as an empty view state."""
    try:
        return decode_view_state(blob)
    except ViewDecodeError as e:
        logger.warning(f"Ignoring undecodable view blob: {e}")
        return ViewState()
