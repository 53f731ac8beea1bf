"""View state and the ViewBlob codec."""

from .codec import decode_view_state, decode_view_state_or_empty, encode_view_state
from .state import ViewState

__all__ = [
    "ViewState",
    "encode_view_state",
    "decode_view_state",
    "decode_view_state_or_empty",
]
