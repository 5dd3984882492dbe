"""Tests for container-create payload rewriting."""
from __future__ import annotations

import json

import pytest

from ..core.rewriter import rewrite

BASE = "/mnt/hgfs/docker/volumes/"


def _encode(document: dict) -> bytes:
    return json.dumps(document).encode("utf-8")


def test_rewrites_binds() -> None:
    result = rewrite(_encode({"HostConfig": {"Binds": ["C:\\data:/app"]}}), base_path=BASE)
    assert result.modified is True
    assert json.loads(result.body)["HostConfig"]["Binds"] == [
        "/mnt/hgfs/docker/volumes/C/data:/app"
    ]


def test_bind_mode_suffix_preserved() -> None:
    result = rewrite(_encode({"HostConfig": {"Binds": ["C:\\data:/app:ro"]}}), base_path="/vol/")
    assert json.loads(result.body)["HostConfig"]["Binds"] == ["/vol/C/data:/app:ro"]


def test_rewrites_env_with_default_base() -> None:
    result = rewrite(_encode({"Env": ["DB_PATH=C:\\config\\db"]}), base_path=BASE)
    assert result.modified is True
    assert json.loads(result.body)["Env"] == ["DB_PATH=/mnt/hgfs/docker/volumes/C/config/db"]


def test_collects_host_ports_per_occurrence() -> None:
    payload = {
        "HostConfig": {
            "PortBindings": {
                "5432/tcp": [{"HostPort": "54322"}],
                "8000/tcp": [{"HostIp": "0.0.0.0", "HostPort": "8000"}, {"HostPort": "54322"}],
            }
        }
    }
    raw = _encode(payload)
    result = rewrite(raw, base_path=BASE)
    assert sorted(result.ports) == ["54322", "54322", "8000"]
    assert result.modified is False
    assert result.body is raw


@pytest.mark.parametrize(
    "raw",
    [
        b"not json",
        b"{\"HostConfig\": ",
        b"\xff\xfe\x00garbage",
        b'{"Env": ["A=C:\\\\x"], "Memory": NaN}',
        b'{"Env": ["A=C:\\\\x"], "CpuShares": -Infinity}',
        b'{"Env": ["A=C:\\\\x"], "HostConfig": {"NanoCpus": 1e400}}',
    ],
)
def test_non_json_passes_through(raw: bytes) -> None:
    result = rewrite(raw, base_path=BASE)
    assert result.body == raw
    assert result.ports == []
    assert result.modified is False


@pytest.mark.parametrize("raw", [b"[\"C:\\\\data:/app\"]", b"\"C:\\\\data\"", b"42", b"null"])
def test_non_object_json_passes_through(raw: bytes) -> None:
    result = rewrite(raw, base_path=BASE)
    assert result.body == raw
    assert result.modified is False


@pytest.mark.parametrize("raw", [b"", None])
def test_empty_body(raw: bytes | None) -> None:
    result = rewrite(raw, base_path=BASE)
    assert result.body == b""
    assert result.ports == []
    assert result.modified is False


def test_unchanged_payload_is_byte_identical() -> None:
    raw = b'{ "Image" : "postgres:16",\n  "Env": ["NAME=value"], "HostConfig": {"Binds": ["pgdata:/data"]} }'
    result = rewrite(raw, base_path=BASE)
    assert result.body is raw
    assert result.modified is False


def test_shape_mismatches_are_skipped_per_field() -> None:
    payload = {
        "Image": "postgres:16",
        "Env": ["DATA=D:\\pg", 7, None],
        "HostConfig": {
            "Binds": "C:\\data:/app",
            "PortBindings": {
                "5432/tcp": [{"HostPort": 5432}, "oops", {"HostPort": "15432"}],
                "53/udp": None,
            },
        },
    }
    result = rewrite(_encode(payload), base_path="/vol/")
    document = json.loads(result.body)
    assert result.modified is True
    assert document["Env"] == ["DATA=/vol/D/pg", 7, None]
    assert document["HostConfig"]["Binds"] == "C:\\data:/app"
    assert result.ports == ["15432"]


def test_host_config_of_wrong_type_still_rewrites_env() -> None:
    result = rewrite(_encode({"HostConfig": ["bad"], "Env": ["X=E:\\y"]}), base_path="/vol")
    assert json.loads(result.body) == {"HostConfig": ["bad"], "Env": ["X=/vol/E/y"]}


def test_rewritten_payload_keeps_other_fields_and_key_order() -> None:
    payload = {
        "Image": "supabase/postgres",
        "Labels": {"com.example.note": "café"},
        "Env": ["PGDATA=C:\\pg", "NAME=value"],
        "HostConfig": {
            "Binds": ["C:\\data:/app", "/srv:/srv"],
            "PortBindings": {"5432/tcp": [{"HostPort": "54322"}]},
        },
    }
    result = rewrite(_encode(payload), base_path="/vol/")
    document = json.loads(result.body)
    assert list(document) == ["Image", "Labels", "Env", "HostConfig"]
    assert document["Labels"] == {"com.example.note": "café"}
    assert document["Env"] == ["PGDATA=/vol/C/pg", "NAME=value"]
    assert document["HostConfig"]["Binds"] == ["/vol/C/data:/app", "/srv:/srv"]
    assert result.ports == ["54322"]
    assert "café".encode("utf-8") in result.body


def test_rewriting_twice_is_a_no_op() -> None:
    first = rewrite(_encode({"HostConfig": {"Binds": ["C:\\data:/app"]}}), base_path=BASE)
    second = rewrite(first.body, base_path=BASE)
    assert second.modified is False
    assert second.body is first.body


def test_finite_numbers_survive_rewrite() -> None:
    raw = b'{"Env": ["A=C:\\\\x"], "HostConfig": {"NanoCpus": 1.5e9, "Memory": 536870912, "CpuPercent": 0.5}}'
    result = rewrite(raw, base_path="/vol/")
    assert result.modified is True
    assert json.loads(result.body) == {
        "Env": ["A=/vol/C/x"],
        "HostConfig": {"NanoCpus": 1.5e9, "Memory": 536870912, "CpuPercent": 0.5},
    }
