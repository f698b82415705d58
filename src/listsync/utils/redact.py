"""Credential scrubbing for batch debug dumps and structured log fields.

Batch envelopes carry per-request headers, and the transport's debug dump
writes both the envelope and the service's answer to *stderr*.  :func:`redact`
returns a scrubbed copy:

* a value stored under a key whose name contains ``token``, ``secret``,
  ``password``, ``credential``, ``authorization``, ``cookie`` or an API-key
  spelling is masked entirely when it is not a string;
* ``Bearer <value>`` is reduced to ``Bearer <redacted>`` in every string;
* the active token is replaced wherever it occurs, keeping its last four
  characters for correlation;
* ``bytes`` become ``<binary:N_bytes>``.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Mapping
from typing import Any

_SENSITIVE_KEY_RE = re.compile(
    r"token|secret|password|credential|authorization|cookie|api[_-]key|client_assertion",
    re.IGNORECASE,
)

_BEARER_RE = re.compile(r"(Bearer\s+)\S+", re.IGNORECASE)

_MASK = "<redacted>"


def _is_sensitive(key: object) -> bool:
    return isinstance(key, str) and _SENSITIVE_KEY_RE.search(key) is not None


def _token_placeholder(token: str) -> str:
    if len(token) < 4:
        return "<redacted:...****>"
    placeholder = f"<redacted:...{token[-4:]}>"
    return _MASK if token in placeholder else placeholder


def _scrub_text(text: str, token: str | None) -> str:
    if token and token in text:
        text = text.replace(token, _token_placeholder(token))
    return _BEARER_RE.sub(lambda m: m.group(1) + _MASK, text)


def _scrub(value: Any, token: str | None, sensitive: bool = False) -> Any:
    if isinstance(value, str):
        return _scrub_text(value, token)
    if sensitive:
        return _MASK
    if isinstance(value, Mapping):
        return {k: _scrub(v, token, _is_sensitive(k)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_scrub(item, token) for item in value]
    if isinstance(value, (bytes, bytearray)):
        return f"<binary:{len(value)}_bytes>"
    return value


def redact(payload: dict, token: str | None = None) -> dict:
    """Return a scrubbed copy of *payload*.

    Parameters
    ----------
    payload:
        A batch envelope, a request/response dump or a dict of log fields.
    token:
        The bearer token in use, if known.

    Returns
    -------
    dict
        A new dictionary; *payload* is never mutated.

    Examples
    --------
    >>> redact({"headers": {"Authorization": "Bearer abc123"}})
    {'headers': {'Authorization': 'Bearer <redacted>'}}
    """
    return _scrub(copy.deepcopy(payload), token)
