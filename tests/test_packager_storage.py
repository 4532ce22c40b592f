"""
Test Suite for the Package Assembler and Artifact Store
=======================================================
"""

from __future__ import annotations

import io
import json
import zipfile

import pytest

from quizconv import storage
from quizconv.errors import ArtifactNotFoundError, PackageAssemblyError
from quizconv.models import ExportBundle, GeneratedDocument, ResourceFile
from quizconv.packager import PackageAssembler, archive_name


def _bundle(*document_paths, resources=()):
    return ExportBundle(
        format_key="qti12",
        manifest=GeneratedDocument(path="imsmanifest.xml", content="<manifest/>"),
        documents=[GeneratedDocument(path=p, content=f"<doc path='{p}'/>") for p in document_paths],
        resources=[ResourceFile(path=p, data=b"\x89PNG") for p in resources],
    )


# ═══════════════════════════════════════════════════════════════════════════════
# PACKAGE ASSEMBLER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestPackageAssembler:

    def test_entry_order_and_compression(self):
        bundle = _bundle("assessment.xml", resources=["resources/q1_img1_a.png"])
        data = PackageAssembler().assemble(bundle)

        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.namelist() == ["imsmanifest.xml", "assessment.xml", "resources/q1_img1_a.png"]
            assert all(info.compress_type == zipfile.ZIP_DEFLATED for info in zf.infolist())
            assert zf.read("imsmanifest.xml") == b"<manifest/>"
            assert zf.read("resources/q1_img1_a.png") == b"\x89PNG"

    def test_multiple_documents(self):
        data = PackageAssembler().assemble(_bundle("assessment.xml", "items/item1.xml", "items/item2.xml"))
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.namelist()[1:] == ["assessment.xml", "items/item1.xml", "items/item2.xml"]

    def test_duplicate_path_rejected(self):
        with pytest.raises(PackageAssemblyError) as exc:
            PackageAssembler().assemble(_bundle("a.xml", "a.xml"))
        assert "duplicate" in exc.value.internal_message
        assert exc.value.fatal

    @pytest.mark.parametrize("path", ["../escape.xml", "/abs.xml", "items/../../x.xml"])
    def test_unsafe_path_rejected(self, path):
        with pytest.raises(PackageAssemblyError):
            PackageAssembler().assemble(_bundle(path))

    def test_archive_name(self):
        assert archive_name("My Quiz!", "QTI1.2") == "My_Quiz_QTI1.2.zip"
        assert archive_name("", "Moodle") == "quiz_Moodle.zip"
        assert archive_name("Unit 3: Cells", "IMSCC") == "Unit_3__Cells_IMSCC.zip"


# ═══════════════════════════════════════════════════════════════════════════════
# ARTIFACT STORE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestStorage:
    """Test the filesystem artifact store."""

    def test_save_and_load(self, tmp_path):
        ref = storage.save_artifact(b"zipbytes", "Quiz_QTI1.2.zip", tmp_path)

        assert ref.display_name == "Quiz_QTI1.2.zip"
        assert (tmp_path / "artifacts" / f"{ref.artifact_id}.zip").exists()
        assert storage.load_artifact(ref.artifact_id, tmp_path) == b"zipbytes"

        marker = json.loads((tmp_path / storage.LAST_ARTIFACT_FILE).read_text())
        assert marker["artifact_id"] == ref.artifact_id

    def test_last_artifact_tracks_newest(self, tmp_path):
        storage.save_artifact(b"one", "one.zip", tmp_path)
        second = storage.save_artifact(b"two", "two.zip", tmp_path)
        assert storage.get_last_artifact(tmp_path) == second

    def test_artifact_ref_lookup(self, tmp_path):
        first = storage.save_artifact(b"one", "one.zip", tmp_path)
        second = storage.save_artifact(b"two", "two.zip", tmp_path)

        assert storage.get_artifact_ref(second.artifact_id, tmp_path) == second
        older = storage.get_artifact_ref(first.artifact_id, tmp_path)
        assert older.artifact_id == first.artifact_id
        assert older.display_name.endswith(".zip")

    def test_missing_artifact(self, tmp_path):
        storage.init_storage(tmp_path)
        with pytest.raises(ArtifactNotFoundError):
            storage.load_artifact("deadbeef", tmp_path)
        with pytest.raises(ArtifactNotFoundError):
            storage.get_artifact_ref("deadbeef", tmp_path)

    def test_invalid_artifact_id(self, tmp_path):
        with pytest.raises(ArtifactNotFoundError):
            storage.load_artifact("../../etc/passwd", tmp_path)

    def test_no_last_artifact(self, tmp_path):
        with pytest.raises(ArtifactNotFoundError) as exc:
            storage.get_last_artifact(tmp_path)
        assert "Nothing has been converted" in exc.value.user_message

    def test_corrupt_marker_is_ignored(self, tmp_path):
        (tmp_path / storage.LAST_ARTIFACT_FILE).write_text("{not json")
        with pytest.raises(ArtifactNotFoundError):
            storage.get_last_artifact(tmp_path)

    def test_save_uploaded_file(self, tmp_path):
        class Upload:
            def save(self, dest):
                with open(dest, "wb") as f:
                    f.write(b"1. Q?")

        path = storage.save_uploaded_file(Upload(), "my exam.txt", tmp_path / "uploads")
        assert path.endswith("my_exam.txt")
        with open(path, "rb") as f:
            assert f.read() == b"1. Q?"

    def test_sanitize_name(self):
        assert storage.sanitize_name("") == "quiz"
        assert storage.sanitize_name("___") == "quiz"
        assert storage.sanitize_name("a/b\\c") == "a_b_c"
        assert storage.sanitize_name("exam.v2.pdf", keep_dots=True) == "exam.v2.pdf"
        assert len(storage.sanitize_name("x" * 300)) == 100
