"""Action rules: matching, rendering, signing and dispatch."""

from .context import build_envelope, sanitize_payload
from .dispatcher import DeliveryOptions, Dispatcher, DispatchBatch
from .draft import send_test
from .matcher import extract_filter_tags, match
from .samples import available_variables, build_sample_envelope
from .signing import SIGNATURE_HEADER, canonical_json, sign, signature_header, verify_signature
from .templates import find_placeholders, render

__all__ = [
    "build_envelope",
    "sanitize_payload",
    "DeliveryOptions",
    "Dispatcher",
    "DispatchBatch",
    "send_test",
    "extract_filter_tags",
    "match",
    "available_variables",
    "build_sample_envelope",
    "SIGNATURE_HEADER",
    "canonical_json",
    "sign",
    "signature_header",
    "verify_signature",
    "find_placeholders",
    "render",
]
