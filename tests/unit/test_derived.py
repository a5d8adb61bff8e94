"""
Unit tests for processing callbacks of encoding and PDF render jobs.
"""

import pytest

from cloudfiles.core.storage import (
    ActiveRecordObjectInvalid,
    EncodingFailed,
    EncodingResult,
    FileMapping,
    FormatUploader,
    KeyVerificationFailed,
    MissingSignature,
    PdfRenderResult,
    StorageFile,
)
from cloudfiles.core.storage.derived import error_messages, is_failed_status
from cloudfiles.infrastructure.snowflake.repositories import InMemoryMappingRepository


class Photo:
    def __init__(self, id=None):
        self.id = id


@pytest.fixture
def original(cloud, repository) -> FileMapping:
    """photo.jpg stored as the original file of Photo#42."""
    stored = cloud.add_file(b"jpeg bytes", "photo.jpg")
    return repository.save_mapping(FileMapping(
        object_name="photo",
        object_identifier=42,
        identifier="photo.jpg",
        nodes=stored["node_domains"],
        file_path=stored["path"],
    ))


def _encoding_result(signature, connection, repository, entity=None, uploader=None):
    return EncodingResult(
        {"signature": signature},
        entity or Photo(42),
        uploader,
        connection=connection,
        repository=repository,
    )


# ---------------------------------------------------------------------------
# Status helpers
# ---------------------------------------------------------------------------

class TestStatusHelpers:

    @pytest.mark.parametrize("status", [0, "0", False, "failed", "Error"])
    def test_failed_statuses(self, status):
        assert is_failed_status(status)

    @pytest.mark.parametrize("status", [1, "1", True, "success", None])
    def test_successful_statuses(self, status):
        assert not is_failed_status(status)

    def test_error_messages(self):
        assert error_messages(None) == []
        assert error_messages("boom") == ["boom"]
        assert error_messages(["a", "", "b"]) == ["a", "b"]


# ---------------------------------------------------------------------------
# Encoding results
# ---------------------------------------------------------------------------

class TestEncodingResult:

    def test_creates_one_mapping_per_format(self, original, cloud, connection, repository):
        signature = cloud.callback_signature({"iphone": b"mp4 bytes", "thumbnail": b"jpg bytes"})
        result = _encoding_result(signature, connection, repository)

        mappings = result.process()

        assert sorted(m.identifier for m in mappings) == ["iphone_photo.mp4", "thumbnail_photo.jpg"]
        assert result.status == "success"
        assert result.succeeded
        assert len(repository.all()) == 3

    def test_original_is_untouched(self, original, cloud, connection, repository):
        before = (original.identifier, original.file_path, list(original.nodes))
        signature = cloud.callback_signature({"iphone": b"mp4", "webm": b"webm"})

        _encoding_result(signature, connection, repository).process()

        found = repository.find_mapping("photo", 42)
        assert found.id == original.id
        assert (found.identifier, found.file_path, found.nodes) == before

    def test_variants_are_readable(self, original, cloud, connection, repository):
        signature = cloud.callback_signature({"iphone": b"mp4 bytes"})
        _encoding_result(signature, connection, repository).process()

        variant = StorageFile(
            entity=Photo(42),
            identifier="iphone_photo.mp4",
            connection=connection,
            repository=repository,
        )

        assert variant.read() == b"mp4 bytes"

    def test_uploader_resolves_extensions(self, original, cloud, connection, repository):
        signature = cloud.callback_signature({"iphone": b"x", "custom": b"y"})
        uploader = FormatUploader(extensions={"iphone": "m4v"})

        mappings = _encoding_result(signature, connection, repository, uploader=uploader).process()

        assert sorted(m.identifier for m in mappings) == ["custom_photo.custom", "iphone_photo.m4v"]

    def test_reported_failure_creates_nothing(self, original, cloud, connection, repository):
        result = _encoding_result(cloud.failure_signature(["input is corrupt"]), connection, repository)

        with pytest.raises(EncodingFailed, match="input is corrupt"):
            result.process()

        assert result.status == "failed"
        assert repository.all() == [original]

    def test_invalid_signature(self, original, connection, repository):
        result = _encoding_result("not-a-signature", connection, repository)

        with pytest.raises(KeyVerificationFailed):
            result.process()

        assert result.status == "failed"

    def test_signature_is_required(self, connection, repository):
        with pytest.raises(MissingSignature):
            EncodingResult({}, Photo(42), connection=connection, repository=repository)

    def test_owner_must_be_persisted(self, connection, repository):
        with pytest.raises(ActiveRecordObjectInvalid):
            EncodingResult({"signature": "x"}, Photo(), connection=connection, repository=repository)

    def test_missing_original(self, cloud, connection, repository):
        signature = cloud.callback_signature({"iphone": b"x"})

        with pytest.raises(EncodingFailed, match="No original"):
            _encoding_result(signature, connection, repository).process()

        assert repository.all() == []

    def test_payload_without_formats(self, original, cipher, connection, repository):
        signature = cipher.encrypt({"status": 1})

        with pytest.raises(EncodingFailed):
            _encoding_result(signature, connection, repository).process()

    def test_scalar_entries_are_not_formats(self, original, cipher, connection, repository):
        signature = cipher.encrypt({"status": 1, "iphone": "oops"})

        with pytest.raises(EncodingFailed, match="no output formats"):
            _encoding_result(signature, connection, repository).process()

    def test_action_and_job_fields_are_ignored(self, original, cloud, cipher, connection, repository):
        produced = cloud.add_file(b"mp4 bytes", "iphone.out")
        signature = cipher.encrypt({
            "action": "encoding_result",
            "job_id": 17,
            "status": 1,
            "iphone": {"node_domains": produced["node_domains"], "path": produced["path"]},
        })

        mappings = _encoding_result(signature, connection, repository).process()

        assert [m.identifier for m in mappings] == ["iphone_photo.mp4"]

    def test_one_invalid_format_rejects_the_whole_callback(self, original, cloud, cipher, connection, repository):
        good = cloud.add_file(b"x", "iphone.out")
        signature = cipher.encrypt({
            "status": 1,
            "iphone": {"node_domains": good["node_domains"], "path": good["path"]},
            "webm": {"node_domains": [], "path": "files/missing.webm"},
        })

        with pytest.raises(EncodingFailed, match="nodes"):
            _encoding_result(signature, connection, repository).process()

        assert repository.all() == [original]

    def test_failed_save_rolls_back(self, cloud, connection):
        class FlakyRepository(InMemoryMappingRepository):
            def __init__(self):
                super().__init__()
                self.saves = 0

            def save_mapping(self, mapping):
                self.saves += 1
                if self.saves == 3:
                    raise RuntimeError("database went away")
                return super().save_mapping(mapping)

        repository = FlakyRepository()
        stored = cloud.add_file(b"jpeg", "photo.jpg")
        original = repository.save_mapping(FileMapping(
            object_name="photo", object_identifier=42,
            nodes=stored["node_domains"], file_path=stored["path"],
        ))
        signature = cloud.callback_signature({"iphone": b"a", "webm": b"b"})

        with pytest.raises(EncodingFailed, match="database went away"):
            _encoding_result(signature, connection, repository).process()

        assert repository.all() == [original]


# ---------------------------------------------------------------------------
# PDF render results
# ---------------------------------------------------------------------------

class TestPdfRenderResult:

    def test_single_file_becomes_pdf_variant(self, original, cloud, cipher, connection, repository):
        rendered = cloud.add_file(b"%PDF-1.4", "invoice.pdf")
        signature = cipher.encrypt(rendered)

        result = PdfRenderResult(
            {"signature": signature},
            Photo(42),
            connection=connection,
            repository=repository,
        )
        mappings = result.process()

        assert [m.identifier for m in mappings] == ["pdf_photo.pdf"]
        assert mappings[0].file_path == rendered["path"]
        assert result.succeeded
