# errors.py
"""Failures raised by the relay and the vault.

Each error carries the HTTP status the gateway answers with and a short
reason string that is safe to show to clients.
"""


class RelayError(Exception):
    status_code = 500
    reason = "Internal error"

    def __init__(self, reason=None):
        if reason is not None:
            self.reason = reason
        super().__init__(self.reason)


class MissingFields(RelayError):
    status_code = 400
    reason = "Missing required fields"


class RecipientNotFound(RelayError):
    status_code = 404
    reason = "Recipient not found"


class NoFileProvided(RelayError):
    status_code = 400
    reason = "No file"


class FileNotFound(RelayError):
    status_code = 404
    reason = "File not found"


class EncryptedFileNotFound(FileNotFound):
    reason = "Encrypted file not found"


class DecryptionFailed(RelayError):
    status_code = 500
    reason = "Decryption failed"


class UnknownSettingKey(RelayError):
    status_code = 400
    reason = "Unknown setting"


class KeyNotFound(RelayError):
    status_code = 404
    reason = "Key not found"
