"""
Tests for local file storage.
"""

import pytest

from contentpipe.core.errors import InvalidRequestError, StorageError
from contentpipe.services.content.file_storage import sanitize_filename


class TestSanitizeFilename:

    @pytest.mark.parametrize(
        "filename, expected",
        [
            ("report.pdf", "report.pdf"),
            ("Q3 report (final).pdf", "Q3_report__final_.pdf"),
            ("../../etc/passwd", "passwd"),
            ("", "upload"),
        ],
    )
    def test_sanitize(self, filename, expected):
        assert sanitize_filename(filename) == expected


@pytest.mark.asyncio
class TestFileStorage:

    async def test_upload_then_download(self, file_storage):
        file_ref = await file_storage.upload("user-1", "my doc.pdf", b"%PDF-1.4 data")

        assert file_ref.startswith("user-1/uploads/")
        assert file_ref.endswith("_my_doc.pdf")
        assert (file_storage.root / file_ref).is_file()
        assert await file_storage.download(file_ref) == b"%PDF-1.4 data"

    async def test_missing_file(self, file_storage):
        with pytest.raises(StorageError):
            await file_storage.download("user-1/uploads/nothing.pdf")

    async def test_reference_cannot_escape_root(self, file_storage):
        with pytest.raises(InvalidRequestError):
            await file_storage.download("../outside.pdf")
