"""
Upload Validator

Checks an uploaded document before any cache lookup or job is created.

VALIDATION RULES:
-----------------
1. File name present, no path traversal
2. Content not empty and within the size limit
3. Content type in the allowed list (when one is declared)
"""

import re

from enhance_gateway.core.exceptions import ValidationError
from enhance_gateway.core.logging import get_logger

logger = get_logger(__name__)

_PATH_TRAVERSAL = re.compile(r"(\.\./|\.\.\\|^/|^[A-Za-z]:\\)")


class UploadValidator:
    DEFAULT_MAX_FILE_BYTES = 50 * 1024 * 1024

    def __init__(self, max_file_bytes: int = DEFAULT_MAX_FILE_BYTES, allowed_content_types: list[str] | None = None):
        self.max_file_bytes = max_file_bytes
        self.allowed_content_types = set(allowed_content_types or [])

    def validate(self, file_name: str, content: bytes, content_type: str | None = None) -> None:
        """
        Raises:
            ValidationError: Describing the first rule the upload breaks
        """
        if not file_name or not file_name.strip():
            raise ValidationError("File name is required", details={"field": "file_name"})

        if _PATH_TRAVERSAL.search(file_name):
            logger.warning("Rejected upload file name", file_name=file_name)
            raise ValidationError("Invalid file name", details={"field": "file_name", "file_name": file_name})

        if not content:
            raise ValidationError("File is empty", details={"field": "file", "file_name": file_name})

        if len(content) > self.max_file_bytes:
            raise ValidationError(
                "File exceeds maximum size",
                details={"file_name": file_name, "size": len(content), "max_size": self.max_file_bytes},
            )

        if self.allowed_content_types and content_type:
            base_type = content_type.split(";", 1)[0].strip().lower()
            if base_type not in self.allowed_content_types:
                raise ValidationError(
                    "Unsupported content type",
                    details={
                        "file_name": file_name,
                        "content_type": content_type,
                        "allowed": sorted(self.allowed_content_types),
                    },
                )
