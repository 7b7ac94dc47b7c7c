import os

import pytest

from runiac.fileutil import copy_file


def test_copy_creates_destination_with_same_contents(tmp_path):
    src = tmp_path / "src.txt"
    src.write_bytes(b"hello runiac\n")
    dst = tmp_path / "dst.txt"

    copy_file(src, dst)

    assert dst.read_bytes() == b"hello runiac\n"


def test_copy_replaces_existing_destination(tmp_path):
    src = tmp_path / "src.txt"
    src.write_bytes(b"new contents")
    dst = tmp_path / "dst.txt"
    dst.write_bytes(b"old contents that are longer")

    copy_file(src, dst)

    assert dst.read_bytes() == b"new contents"
    assert src.read_bytes() == b"new contents"


def test_same_file_is_left_alone(tmp_path):
    src = tmp_path / "src.txt"
    src.write_bytes(b"shared")
    dst = tmp_path / "link.txt"
    os.link(src, dst)

    copy_file(src, dst)

    assert os.path.samefile(src, dst)
    assert dst.read_bytes() == b"shared"


def test_copying_file_onto_itself_keeps_contents(tmp_path):
    src = tmp_path / "same.txt"
    src.write_bytes(b"unchanged")

    copy_file(src, src)

    assert src.read_bytes() == b"unchanged"


def test_missing_source_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        copy_file(tmp_path / "missing.txt", tmp_path / "dst.txt")
    assert not (tmp_path / "dst.txt").exists()


def test_directory_source_is_rejected(tmp_path):
    src = tmp_path / "folder"
    src.mkdir()

    with pytest.raises(ValueError, match="non-regular source file"):
        copy_file(src, tmp_path / "dst.txt")


def test_directory_destination_is_rejected(tmp_path):
    src = tmp_path / "src.txt"
    src.write_bytes(b"data")
    dst = tmp_path / "folder"
    dst.mkdir()

    with pytest.raises(ValueError, match="non-regular destination file"):
        copy_file(src, dst)
    assert dst.is_dir()