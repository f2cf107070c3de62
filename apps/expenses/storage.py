import logging
import uuid

from django.conf import settings
from django.core.exceptions import SuspiciousFileOperation
from django.core.files.base import ContentFile
from django.core.files.storage import FileSystemStorage

logger = logging.getLogger(__name__)

INVALID_NAME_SEQUENCES = ("..", "/", "\\", "\x00")


class FileStorageError(Exception):
    pass


class InvalidFileName(FileStorageError):
    pass


class ExpenseFileStorage:
    """Receipt files on local disk, addressed by a generated storage key.

    Keys are ``<uuid4>_<original name>`` so two uploads of the same file never
    collide. Deleting is idempotent and never raises: a leftover file is
    preferable to aborting a workflow change.
    """

    def __init__(self, location=None):
        self.location = str(location or settings.EXPENSE_UPLOAD_DIR)
        self._backend = FileSystemStorage(location=self.location)

    @staticmethod
    def build_key(original_name):
        name = (original_name or "").strip()
        if not name:
            raise InvalidFileName("Invalid file name")
        key = f"{uuid.uuid4()}_{name}"
        if any(sequence in key for sequence in INVALID_NAME_SEQUENCES):
            raise InvalidFileName(f"Sorry! Filename contains invalid path sequence {name}")
        return key

    def store(self, content, original_name):
        key = self.build_key(original_name)
        if isinstance(content, (bytes, bytearray)):
            content = ContentFile(bytes(content))
        try:
            stored_key = self._backend.save(key, content)
        except (OSError, SuspiciousFileOperation) as exc:
            raise FileStorageError(f"Could not store file {key}. Please try again!") from exc
        logger.info("Stored receipt file %s", stored_key)
        return stored_key

    def delete(self, key):
        if not key:
            return
        try:
            self._backend.delete(key)
        except (OSError, SuspiciousFileOperation) as exc:
            logger.warning("Failed to delete file %s: %s", key, exc)

    def exists(self, key):
        if not key:
            return False
        try:
            return self._backend.exists(key)
        except SuspiciousFileOperation:
            return False

    def path(self, key):
        return self._backend.path(key)
