"""Opaque values carried on call legs: ``client_state`` and SIP URIs."""
import base64
import binascii
import json
import re
from typing import Any, Dict, Optional

_SIP_USERNAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
_SIP_URI_RE = re.compile(r"^sips?:([^@;]+)@", re.IGNORECASE)


def encode_client_state(state: Dict[str, Any]) -> str:
    """Base64 of the UTF-8 JSON encoding, as Telnyx expects."""
    return base64.b64encode(json.dumps(state).encode("utf-8")).decode("ascii")


def decode_client_state(value: Optional[str]) -> Optional[Dict[str, Any]]:
    """Inverse of ``encode_client_state``; anything undecodable is ``None``."""
    if not value:
        return None
    try:
        decoded = json.loads(base64.b64decode(value).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    return decoded if isinstance(decoded, dict) else None


def sip_uri(username: Optional[str], domain: str = "sip.telnyx.com") -> Optional[str]:
    if not username or not _SIP_USERNAME_RE.match(username):
        return None
    return f"sip:{username}@{domain}"


def sip_username_from_uri(uri: Optional[str]) -> Optional[str]:
    if not uri:
        return None
    match = _SIP_URI_RE.match(uri.strip())
    return match.group(1) if match else None
