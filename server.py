# server.py
import logging
import os
import sys

from flask import Flask, Response, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import RequestEntityTooLarge

import config
from errors import (KeyNotFound, MissingFields, NoFileProvided, RecipientNotFound, RelayError,
                    UnknownSettingKey)
from relay import KeyDirectory, MailboxStore
from vault import VaultCodec, VaultSettings

logger = logging.getLogger("relay")


def setup_logging(log_file=None):
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


def log_event(event_type, subject, details=""):
    """Log a request-level event. Never pass message or file contents here."""
    logger.info("%s - %s - %s", event_type, subject, details)


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _require(data, *fields):
    # Present and textual; empty strings are valid values
    if not all(isinstance(data.get(field), str) for field in fields):
        raise MissingFields()
    return [data[field] for field in fields]


def create_app(overrides=None):
    settings_map = config.as_dict()
    settings_map.update(overrides or {})

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = settings_map["MAX_CONTENT_LENGTH"]
    CORS(app)

    # --- Process-lifetime state ---
    directory = KeyDirectory()
    mailbox = MailboxStore(directory)
    settings = VaultSettings(
        encryption_at_rest=settings_map["ENCRYPTION_AT_REST"],
        p2p_discovery=settings_map["P2P_DISCOVERY"],
    )
    codec = VaultCodec(settings_map["UPLOAD_FOLDER"], settings_map["ENCRYPTED_FOLDER"], settings,
                       key=settings_map.get("VAULT_KEY"))
    app.extensions["relay"] = {"directory": directory, "mailbox": mailbox,
                               "settings": settings, "codec": codec}

    # ===== Error Mapping =====
    @app.errorhandler(RelayError)
    def handle_relay_error(error):
        return jsonify({"error": error.reason}), error.status_code

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(error):
        return jsonify({"error": "File too large"}), 413

    # ===== Health & Status =====
    @app.route("/", methods=["GET"])
    def home():
        return jsonify({
            "service": "Sealed Relay",
            "status": "operational",
            "endpoints": {
                "register_key": "/register-key",
                "public_key": "/public-key/<userId>",
                "send": "/send",
                "inbox": "/inbox/<userId>",
                "upload": "/upload",
                "download": "/download/<storageName>",
                "settings": "/settings",
                "toggle_setting": "/toggle-setting",
                "status": "/status",
            },
        })

    @app.route("/status", methods=["GET"])
    def status():
        return jsonify({
            "Symmetric Encryption": "AES-256-GCM",
            "registered_keys": len(directory),
            "messages_in_store": mailbox.pending_count(),
            "settings": settings.get(),
        })

    # ===== Key Directory & Mailboxes =====
    @app.route("/register-key", methods=["POST"])
    def register_key():
        data = _json_body()
        user_id, public_key = _require(data, "userId", "publicKey")
        directory.register(user_id, public_key)
        log_event("KEY_REGISTERED", user_id)
        return jsonify({"status": "ok"})

    @app.route("/public-key/<user_id>", methods=["GET"])
    def public_key(user_id):
        key = directory.lookup(user_id)
        if key is None:
            raise KeyNotFound()
        return jsonify({"userId": user_id, "publicKey": key})

    @app.route("/send", methods=["POST"])
    def send_message():
        data = _json_body()
        to, sender, box, nonce = _require(data, "to", "from", "box", "nonce")
        try:
            mailbox.send(to, sender, box, nonce)
        except RecipientNotFound:
            log_event("SEND_REJECTED", sender, f"Unknown recipient {to}")
            raise
        log_event("MESSAGE_STORED", sender, f"To {to}")
        return jsonify({"status": "message stored"})

    @app.route("/inbox/<user_id>", methods=["GET"])
    def inbox(user_id):
        envelopes = mailbox.fetch_inbox(user_id)
        if envelopes:
            log_event("INBOX_DRAINED", user_id, f"{len(envelopes)} message(s)")
        return jsonify([envelope.to_dict() for envelope in envelopes])

    # ===== File Vault =====
    @app.route("/upload", methods=["POST"])
    def upload_file():
        file = request.files.get("file")
        if file is None or file.filename == "":
            raise NoFileProvided()

        descriptor = codec.store_file(file.read(), codec.new_storage_name(), original_name=file.filename)
        log_event("FILE_STORED", descriptor.storage_name,
                  "encrypted" if descriptor.encrypted else "plaintext")
        return jsonify({"storageName": descriptor.storage_name, "originalName": file.filename})

    @app.route("/download/<storage_name>", methods=["GET"])
    def download_file(storage_name):
        try:
            contents = codec.retrieve_file(storage_name)
        except RelayError as e:
            log_event("DOWNLOAD_FAILED", storage_name, e.reason)
            raise

        log_event("FILE_SERVED", storage_name)
        return Response(
            contents,
            mimetype="application/octet-stream",
            headers={"Content-Disposition": codec.content_disposition(storage_name)},
        )

    # ===== Settings =====
    @app.route("/settings", methods=["GET"])
    def get_settings():
        return jsonify(settings.get())

    @app.route("/toggle-setting", methods=["POST"])
    def toggle_setting():
        key = _json_body().get("key")
        try:
            snapshot = settings.toggle(key)
        except UnknownSettingKey:
            logger.warning("Ignoring toggle of unknown setting %r", key)
            return jsonify(settings.get())
        log_event("SETTING_TOGGLED", key, f"now {snapshot[key]}")
        return jsonify(snapshot)

    return app


if __name__ == "__main__":
    setup_logging(config.LOG_FILE)
    app = create_app()

    print("=" * 60)
    print("SEALED RELAY (E2E message relay + encrypted file vault)")
    print("=" * 60)
    print(f"Encryption at rest: {'on' if config.ENCRYPTION_AT_REST else 'off'} (AES-256-GCM)")
    print(f"Plaintext folder: {config.UPLOAD_FOLDER}")
    print(f"Encrypted folder: {config.ENCRYPTED_FOLDER}")
    print("=" * 60)
    print(f"Server starting on http://{config.RELAY_HOST}:{config.RELAY_PORT}")
    print("=" * 60)

    app.run(host=config.RELAY_HOST, port=config.RELAY_PORT, debug=config.RELAY_DEBUG, threaded=True)
