"""Tests for corruption and duplicate admission checks."""

import pytest

from photoflow_runner.errors import DuplicateError, ValidationError
from photoflow_runner.gate import DuplicateGate, content_hash, is_corrupted, perceptual_hash


def test_valid_image_is_not_corrupted(tmp_path, make_image):
    path = make_image(tmp_path / "ok.jpg")
    assert is_corrupted(path) is False


def test_zero_byte_file_is_corrupted(tmp_path):
    path = tmp_path / "empty.jpg"
    path.write_bytes(b"")
    assert is_corrupted(path) is True


def test_truncated_file_is_corrupted(tmp_path, make_image):
    path = make_image(tmp_path / "full.png", size=(256, 256))
    data = path.read_bytes()
    truncated = tmp_path / "truncated.png"
    truncated.write_bytes(data[: len(data) // 2])
    assert is_corrupted(truncated) is True


def test_non_image_bytes_are_corrupted(tmp_path):
    path = tmp_path / "notes.jpg"
    path.write_text("definitely not an image")
    assert is_corrupted(path) is True


def test_content_hash_is_stable_for_identical_bytes(tmp_path, make_image):
    first = make_image(tmp_path / "a.jpg")
    second = tmp_path / "b.jpg"
    second.write_bytes(first.read_bytes())

    digest = content_hash(first)
    assert digest == content_hash(second)
    assert len(digest) == 32


def test_content_hash_differs_for_different_content(tmp_path, make_image):
    red = make_image(tmp_path / "red.png", color=(255, 0, 0))
    blue = make_image(tmp_path / "blue.png", color=(0, 0, 255))
    assert content_hash(red) != content_hash(blue)


def test_content_hash_rejects_unreadable_file(tmp_path):
    path = tmp_path / "bad.jpg"
    path.write_bytes(b"\x00\x01")
    with pytest.raises(ValidationError):
        content_hash(path)


def test_perceptual_hash_is_hex_prefixed(tmp_path, make_image):
    path = make_image(tmp_path / "p.png")
    assert perceptual_hash(path).startswith("0x")


def test_gate_rejects_second_identical_file(tmp_path, make_image):
    first = make_image(tmp_path / "a.jpg")
    second = tmp_path / "b.jpg"
    second.write_bytes(first.read_bytes())

    gate = DuplicateGate()
    digest = gate.admit(first)

    with pytest.raises(DuplicateError) as excinfo:
        gate.admit(second)

    assert excinfo.value.hash == digest
    assert excinfo.value.to_dict()["hash"] == digest
    assert digest in gate
    assert len(gate) == 1


def test_gate_rejects_corrupted_file(tmp_path):
    path = tmp_path / "empty.jpg"
    path.write_bytes(b"")
    gate = DuplicateGate()

    with pytest.raises(ValidationError, match="corrupted"):
        gate.admit(path)
    assert len(gate) == 0


def test_separate_gates_do_not_share_hashes(tmp_path, make_image):
    path = make_image(tmp_path / "a.jpg")
    assert DuplicateGate().admit(path) == DuplicateGate().admit(path)
