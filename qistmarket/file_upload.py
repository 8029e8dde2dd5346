"""
Secure File Upload Utility
Validates verification uploads and stores them under the upload folder
"""
import os
import uuid

import magic
from werkzeug.utils import secure_filename
from werkzeug.datastructures import FileStorage
from flask import current_app
from qistmarket.logger_config import log_info
from typing import Tuple, Optional, Dict

# Content types accepted for verification documents
ALLOWED_MIME_TYPES = {
    'image/jpeg',
    'image/png',
    'image/gif',
    'image/webp',
    'application/pdf',
}

MAX_UPLOAD_SIZE = 10 * 1024 * 1024  # 10MB


def get_file_mime_type(file_data: bytes) -> Optional[str]:
    """Detect MIME type from file content with libmagic"""
    if not file_data:
        return None
    return magic.from_buffer(file_data[:2048], mime=True)


def validate_upload(file: FileStorage, max_size: int = MAX_UPLOAD_SIZE) -> Tuple[Optional[bytes], Optional[str]]:
    """
    Check presence, size and content type of an uploaded file

    Returns:
        Tuple of (file_data, error_message)
    """
    if not file or not file.filename:
        return None, "No file uploaded"

    file.seek(0)
    file_data = file.read()
    file.seek(0)

    if not file_data:
        return None, "File is empty"

    if len(file_data) > max_size:
        return None, (f"File size ({len(file_data) / 1024 / 1024:.2f}MB) exceeds maximum "
                      f"allowed size ({max_size / 1024 / 1024:.2f}MB)")

    if get_file_mime_type(file_data) not in ALLOWED_MIME_TYPES:
        return None, "File type is not allowed. Upload an image or a PDF"

    return file_data, None


def save_verification_file(file: FileStorage, verification_id: int, doc_type: str = '') -> Tuple[Optional[Dict], Optional[str]]:
    """
    Validate and save an uploaded verification file

    Files land in uploads/verifications/{verification_id}/ under a random name.

    Returns:
        Tuple of (file_info_dict, error_message)
    """
    file_data, error = validate_upload(file)
    if error:
        return None, error

    upload_folder = current_app.config.get('UPLOAD_FOLDER')
    if not upload_folder:
        return None, "Upload folder not configured"

    subfolder = os.path.join('verifications', str(verification_id))
    os.makedirs(os.path.join(upload_folder, subfolder), exist_ok=True)

    ext = os.path.splitext(secure_filename(file.filename))[1].lower()
    unique_id = uuid.uuid4().hex[:12]
    safe_filename = f"{doc_type}_{unique_id}{ext}" if doc_type else f"{unique_id}{ext}"

    relative_path = os.path.join(subfolder, safe_filename)
    file.save(os.path.join(upload_folder, relative_path))

    log_info(f"File saved: {relative_path}", {"verification_id": verification_id, "doc_type": doc_type})

    return {
        'path': relative_path,
        'url': public_url(relative_path),
        'mimetype': get_file_mime_type(file_data),
        'size': len(file_data),
    }, None


def public_url(relative_path: str) -> str:
    """Stable public URL for a stored file"""
    base_url = current_app.config.get('UPLOADS_BASE_URL', '').rstrip('/')
    return f"{base_url}/{relative_path.replace(os.sep, '/')}"
