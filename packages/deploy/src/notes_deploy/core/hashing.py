import hashlib
from typing import Any

from .json import stable_json_dumps


def sha256_bytes(b: bytes) -> str:
    h = hashlib.sha256()
    h.update(b)
    return h.hexdigest()


def sha256_json(obj: Any) -> str:
    """Digest of the canonical (sorted, compact) JSON form of `obj`."""
    return sha256_bytes(stable_json_dumps(obj, indent=None).encode("utf-8"))
