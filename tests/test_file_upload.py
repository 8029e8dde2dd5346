import base64
import io

import pytest
from werkzeug.datastructures import FileStorage

from qistmarket.file_upload import get_file_mime_type, validate_upload

PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n<< /Root 1 0 R >>\n%%EOF\n"


def storage(data, filename="upload.bin"):
    return FileStorage(stream=io.BytesIO(data), filename=filename)


def test_detects_content_type_from_bytes():
    assert get_file_mime_type(PNG_BYTES) == "image/png"
    assert get_file_mime_type(PDF_BYTES) == "application/pdf"
    assert get_file_mime_type(b"") is None


@pytest.mark.parametrize("data", [PNG_BYTES, PDF_BYTES])
def test_accepts_images_and_pdfs_whatever_the_filename(data):
    file_data, error = validate_upload(storage(data, "renamed.txt"))

    assert error is None
    assert file_data == data


def test_rejects_disguised_executables_and_text():
    for data, name in ((b"MZ\x90\x00\x03\x00\x00\x00binary", "photo.png"), (b"just some text\n", "scan.jpg")):
        file_data, error = validate_upload(storage(data, name))
        assert file_data is None
        assert error == "File type is not allowed. Upload an image or a PDF"


def test_rejects_missing_empty_and_oversized_files():
    assert validate_upload(None) == (None, "No file uploaded")
    assert validate_upload(storage(b"", "empty.png")) == (None, "File is empty")

    _, error = validate_upload(storage(PNG_BYTES, "big.png"), max_size=10)
    assert error.startswith("File size")
