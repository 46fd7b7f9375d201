# vault.py
"""Encrypted-at-rest file storage.

Encrypted files are stored as a single frame::

    IV (16 bytes) || GCM tag (16 bytes) || ciphertext

under a 256-bit key generated once per process. The key is never written
anywhere, so files encrypted by an earlier process cannot be read back.
"""
import logging
import os
import re
import secrets
import threading
import unicodedata
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import quote

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from werkzeug.utils import secure_filename

from errors import DecryptionFailed, EncryptedFileNotFound, FileNotFound, UnknownSettingKey

logger = logging.getLogger("relay.vault")

IV_LEN = 16
TAG_LEN = 16
HEADER_LEN = IV_LEN + TAG_LEN
ENC_SUFFIX = ".enc"

# Server-assigned names: 32 hex chars (matched after stripping .enc)
STORAGE_NAME_RE = re.compile(r"[0-9a-f]{32}")


class VaultSettings:
    """Process-wide feature flags, toggled one at a time."""

    def __init__(self, encryption_at_rest=True, p2p_discovery=False):
        self._values = {"encryptionAtRest": bool(encryption_at_rest),
                        "p2pDiscovery": bool(p2p_discovery)}
        self._lock = threading.Lock()

    def get(self):
        with self._lock:
            return dict(self._values)

    def toggle(self, key):
        if not isinstance(key, str) or key not in self._values:
            raise UnknownSettingKey()
        with self._lock:
            self._values[key] = not self._values[key]
            return dict(self._values)

    @property
    def encryption_at_rest(self):
        return self._values["encryptionAtRest"]


@dataclass(frozen=True)
class StorageDescriptor:
    storage_name: str
    original_name: Optional[str]
    encrypted: bool
    size: int


def strip_enc(name):
    return name[:-len(ENC_SUFFIX)] if name.endswith(ENC_SUFFIX) else name


class VaultCodec:
    def __init__(self, upload_dir, encrypted_dir, settings: VaultSettings, key: Optional[bytes] = None):
        self.upload_dir = upload_dir
        self.encrypted_dir = encrypted_dir
        self.settings = settings
        self._key = key if key is not None else AESGCM.generate_key(bit_length=256)
        if len(self._key) != 32:
            raise ValueError("Vault key must be 32 bytes")
        self._aes = AESGCM(self._key)
        # storage stem -> client supplied name, for download headers only.
        # Lives as long as the process, like the vault key; never trimmed.
        self._original_names: Dict[str, str] = {}
        os.makedirs(self.upload_dir, exist_ok=True)
        os.makedirs(self.encrypted_dir, exist_ok=True)

    # ===== Framing =====
    def encrypt_frame(self, raw: bytes) -> bytes:
        iv = os.urandom(IV_LEN)
        sealed = self._aes.encrypt(iv, raw, None)
        # AESGCM appends the tag; the frame carries it up front
        ciphertext, tag = sealed[:-TAG_LEN], sealed[-TAG_LEN:]
        return iv + tag + ciphertext

    def decrypt_frame(self, frame: bytes) -> bytes:
        if len(frame) < HEADER_LEN:
            logger.warning("Truncated frame (%d bytes)", len(frame))
            raise DecryptionFailed()
        iv, tag, ciphertext = frame[:IV_LEN], frame[IV_LEN:HEADER_LEN], frame[HEADER_LEN:]
        try:
            return self._aes.decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            logger.warning("Frame failed authentication (%d bytes)", len(frame))
            raise DecryptionFailed() from None

    # ===== Storage =====
    @staticmethod
    def new_storage_name():
        return secrets.token_hex(16)

    def store_file(self, raw: bytes, assigned_name: str, original_name: Optional[str] = None) -> StorageDescriptor:
        if not STORAGE_NAME_RE.fullmatch(assigned_name):
            raise ValueError(f"Invalid storage name: {assigned_name!r}")

        if original_name:
            self._original_names[assigned_name] = original_name

        plaintext_path = os.path.join(self.upload_dir, assigned_name)
        if not self.settings.encryption_at_rest:
            _write_atomic(plaintext_path, raw)
            return StorageDescriptor(assigned_name, original_name, False, len(raw))

        frame = self.encrypt_frame(raw)
        _write_atomic(os.path.join(self.encrypted_dir, assigned_name + ENC_SUFFIX), frame)
        # No plaintext copy may survive next to the frame
        if os.path.exists(plaintext_path):
            os.remove(plaintext_path)
        return StorageDescriptor(assigned_name + ENC_SUFFIX, original_name, True, len(frame))

    def retrieve_file(self, storage_name: str) -> bytes:
        """Return the stored bytes, decrypting when encryption at rest is on.

        The lookup follows the current ``encryptionAtRest`` value rather than
        how the file was stored, so toggling the setting hides files stored
        under the other mode.
        """
        stem = strip_enc(storage_name)
        if not self.settings.encryption_at_rest:
            path = os.path.join(self.upload_dir, stem)
            if not STORAGE_NAME_RE.fullmatch(stem) or not os.path.isfile(path):
                raise FileNotFound()
            with open(path, "rb") as f:
                return f.read()

        path = os.path.join(self.encrypted_dir, stem + ENC_SUFFIX)
        if not STORAGE_NAME_RE.fullmatch(stem) or not os.path.isfile(path):
            raise EncryptedFileNotFound()
        with open(path, "rb") as f:
            frame = f.read()
        return self.decrypt_frame(frame)

    def download_name(self, storage_name: str) -> str:
        stem = strip_enc(storage_name)
        name = self._original_names.get(stem, stem)
        return secure_filename(name) or stem

    def content_disposition(self, storage_name: str) -> str:
        """Attachment header with an ASCII filename plus an RFC 5987 UTF-8 form
        when the original name has non-ASCII characters."""
        header = f'attachment; filename="{self.download_name(storage_name)}"'
        original = self._original_names.get(strip_enc(storage_name))
        if original and not original.isascii():
            # Drop path separators and control characters; quote() escapes the rest
            cleaned = "".join(ch for ch in original.replace("/", "_").replace("\\", "_")
                              if not unicodedata.category(ch).startswith("C")).strip()
            if cleaned:
                header += f"; filename*=UTF-8''{quote(cleaned, safe='')}"
        return header


def _write_atomic(path, data):
    tmp_path = f"{path}.{secrets.token_hex(4)}.part"
    try:
        with open(tmp_path, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except OSError:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
