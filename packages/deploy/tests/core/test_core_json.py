from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from notes_deploy.core import fs, hashing, json


def test_sha256_helpers() -> None:
    assert (
        hashing.sha256_bytes(b"abc")
        == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    )
    assert hashing.sha256_json({"a": 1, "b": [1, 2]}) == hashing.sha256_json(
        {"b": [1, 2], "a": 1}
    )
    assert hashing.sha256_json({"a": 1}) != hashing.sha256_json({"a": 2})


@dataclass
class _Thing:
    name: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name}


def test_json_helpers(tmp_path: Path) -> None:
    out = tmp_path / "nested" / "sample.json"
    json.atomic_write_json(out, {"b": 1, "a": _Thing("x"), "p": Path("/tmp")})
    assert json.read_json(out) == {"b": 1, "a": {"name": "x"}, "p": "/tmp"}

    assert json.stable_json_dumps({"b": 1, "a": 2}, indent=None) == '{"a":2,"b":1}'


def test_atomic_write_text_replaces(tmp_path: Path) -> None:
    p = tmp_path / "d" / "f.txt"
    fs.atomic_write_text(p, "one")
    fs.atomic_write_text(p, "two")
    assert p.read_text() == "two"
    assert [x.name for x in p.parent.iterdir()] == ["f.txt"]

    fs.safe_unlink(p)
    fs.safe_unlink(p)
    assert not p.exists()
