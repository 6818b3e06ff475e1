"""Tests for the exiftool command builder and the ExifToolSink subprocess handling."""

import os
import stat
import sys

import pytest

from src.api.errors import MetadataWriteError
from src.metadata import exif_writer
from src.metadata.exif_writer import (
    WRITE_FORMAT_UNSUPPORTED,
    WRITE_OK,
    WRITE_UNAVAILABLE,
    ExifToolSink,
    build_write_command,
    cleanup_backup_files,
    parse_read_output,
)
from src.utils.file_utils import MediaClass

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses a shell script as a fake exiftool")


def fake_exiftool(tmp_path, body):
    script = tmp_path / "exiftool"
    script.write_text("#!/bin/sh\n" + body + "\n")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(script)


class TestBuildWriteCommand:
    def test_tags_for_all_fields(self):
        command = build_write_command("exiftool", "/a/b.jpg", {
            "title": "Red apple", "description": "A red apple.", "keywords": ["apple", "fruit", "apple"],
        })
        assert command[0] == "exiftool" and command[-1] == "/a/b.jpg"
        assert "-overwrite_original" in command
        assert "-XMP:Title=Red apple" in command and "-IPTC:ObjectName=Red apple" in command
        assert "-EXIF:ImageDescription=A red apple." in command
        assert command.index("-IPTC:Keywords=") < command.index("-IPTC:Keywords+=apple")
        assert command.count("-XMP:Subject+=apple") == 1
        assert "-XMP:Subject+=fruit" in command

    def test_long_title_cut(self):
        command = build_write_command("exiftool", "x.jpg", {"title": "t" * 300})
        title_arg = next(a for a in command if a.startswith("-XMP:Title="))
        assert len(title_arg) == len("-XMP:Title=") + 160

    def test_empty_fields_omitted(self):
        command = build_write_command("exiftool", "x.jpg", {"title": "", "description": "", "keywords": []})
        assert not any(a.startswith(("-XMP:", "-IPTC:", "-EXIF:")) for a in command)


class TestParseReadOutput:
    def test_lists_and_fallback_tags(self):
        out = '[{"SourceFile": "a.jpg", "ObjectName": "Boat", "Caption-Abstract": "A boat.", "Subject": ["sea", "boat"]}]'
        assert parse_read_output(out) == {"title": "Boat", "description": "A boat.", "keywords": ["sea", "boat"]}

    def test_single_keyword_string(self):
        assert parse_read_output('[{"Keywords": "sea, sky"}]')["keywords"] == ["sea", "sky"]

    def test_garbage(self):
        assert parse_read_output("not json") == {"title": "", "description": "", "keywords": []}


class TestExifToolSink:
    async def test_unavailable_without_binary(self, monkeypatch):
        monkeypatch.setattr(exif_writer, "find_exiftool", lambda: None)
        sink = ExifToolSink()
        assert not sink.available
        assert await sink.write("x.jpg", {"title": "t"}) == WRITE_UNAVAILABLE

    def test_only_images_are_embedded(self):
        sink = ExifToolSink(exiftool_path="exiftool")
        assert sink.supports_embedding(MediaClass.IMAGE)
        assert not sink.supports_embedding(MediaClass.VIDEO)
        assert not sink.supports_embedding(MediaClass.VECTOR_OPAQUE)

    @posix_only
    async def test_successful_write(self, tmp_path):
        target = tmp_path / "a.jpg"
        target.write_bytes(b"x")
        sink = ExifToolSink(fake_exiftool(tmp_path, "exit 0"))
        assert await sink.write(str(target), {"title": "t", "description": "d", "keywords": ["k"]}) == WRITE_OK

    @posix_only
    async def test_unsupported_container(self, tmp_path):
        target = tmp_path / "a.jpg"
        target.write_bytes(b"x")
        sink = ExifToolSink(fake_exiftool(tmp_path, "echo 'Error: Writing of this type of file is not supported' >&2; exit 1"))
        assert await sink.write(str(target), {"title": "t"}) == WRITE_FORMAT_UNSUPPORTED

    @posix_only
    async def test_other_failure_raises(self, tmp_path):
        target = tmp_path / "a.jpg"
        target.write_bytes(b"x")
        sink = ExifToolSink(fake_exiftool(tmp_path, "echo 'Error: file is corrupt' >&2; exit 1"))
        with pytest.raises(MetadataWriteError, match="exit code 1"):
            await sink.write(str(target), {"title": "t"})

    @posix_only
    async def test_read(self, tmp_path):
        sink = ExifToolSink(fake_exiftool(tmp_path, """echo '[{"Title": "Cat", "Keywords": ["cat", "pet"]}]'"""))
        assert await sink.read(str(tmp_path / "a.jpg")) == {"title": "Cat", "description": "", "keywords": ["cat", "pet"]}


def test_cleanup_backup_files(tmp_path):
    target = tmp_path / "photo.jpg"
    target.write_bytes(b"x")
    (tmp_path / "photo.jpg_original").write_bytes(b"x")
    (tmp_path / "photo_backup.jpg").write_bytes(b"x")

    cleanup_backup_files(str(target))

    assert sorted(os.listdir(tmp_path)) == ["photo.jpg"]
