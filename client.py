# client.py
"""Command-line client for the relay.

Boxes are sealed here, never on the server: X25519 agreement between the
sender's private key and the recipient's public key, HKDF-SHA256 to an
AES-256-GCM key, 12-byte random nonce. Keys, boxes and nonces travel as
base64 text.
"""
import argparse
import base64
import json
import os
import sys

import requests
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

BACKEND_URL = os.getenv("RELAY_URL", "http://127.0.0.1:3001")
BOX_INFO = b"sealed-relay box v1"


class RelayClientError(Exception):
    def __init__(self, status_code, reason):
        super().__init__(f"{status_code}: {reason}")
        self.status_code = status_code
        self.reason = reason


# ===== Client-side boxes =====
def b64e(data):
    return base64.b64encode(data).decode()


def b64d(text):
    return base64.b64decode(text)


def generate_keypair():
    """Return (private_key, public_key_b64)."""
    private_key = X25519PrivateKey.generate()
    return private_key, public_key_b64(private_key)


def public_key_b64(private_key):
    raw = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw
    )
    return b64e(raw)


def private_key_b64(private_key):
    raw = private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return b64e(raw)


def load_private_key(text):
    return X25519PrivateKey.from_private_bytes(b64d(text))


def _box_key(own_private, peer_public_b64):
    shared = own_private.exchange(X25519PublicKey.from_public_bytes(b64d(peer_public_b64)))
    return HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=BOX_INFO).derive(shared)


def seal_box(plaintext, recipient_public_b64, sender_private):
    """Encrypt ``plaintext`` (str or bytes) for the recipient. Returns (box_b64, nonce_b64)."""
    if isinstance(plaintext, str):
        plaintext = plaintext.encode()
    nonce = os.urandom(12)
    box = AESGCM(_box_key(sender_private, recipient_public_b64)).encrypt(nonce, plaintext, None)
    return b64e(box), b64e(nonce)


def open_box(box_b64, nonce_b64, sender_public_b64, recipient_private):
    """Decrypt a box; raises cryptography's InvalidTag if it was tampered with."""
    key = _box_key(recipient_private, sender_public_b64)
    return AESGCM(key).decrypt(b64d(nonce_b64), b64d(box_b64), None)


# ===== HTTP client =====
class RelayClient:
    def __init__(self, base_url=BACKEND_URL, session=None, timeout=10):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _check(self, response):
        if response.ok:
            return response
        try:
            reason = response.json().get("error", response.text)
        except ValueError:
            reason = response.text
        raise RelayClientError(response.status_code, reason)

    def _get(self, endpoint):
        return self._check(self.session.get(f"{self.base_url}{endpoint}", timeout=self.timeout))

    def _post(self, endpoint, **kwargs):
        return self._check(self.session.post(f"{self.base_url}{endpoint}", timeout=self.timeout, **kwargs))

    def register_key(self, user_id, public_key):
        return self._post("/register-key", json={"userId": user_id, "publicKey": public_key}).json()

    def public_key(self, user_id):
        return self._get(f"/public-key/{user_id}").json()["publicKey"]

    def send(self, to, sender, box, nonce):
        return self._post("/send", json={"to": to, "from": sender, "box": box, "nonce": nonce}).json()

    def inbox(self, user_id):
        return self._get(f"/inbox/{user_id}").json()

    def upload(self, path):
        with open(path, "rb") as f:
            return self._post("/upload", files={"file": (os.path.basename(path), f)}).json()

    def download(self, storage_name):
        return self._get(f"/download/{storage_name}").content

    def settings(self):
        return self._get("/settings").json()

    def toggle_setting(self, key):
        return self._post("/toggle-setting", json={"key": key}).json()


# ===== CLI =====
def build_parser():
    parser = argparse.ArgumentParser(description="Sealed relay client")
    parser.add_argument("--url", default=BACKEND_URL, help="relay base URL")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("keygen", help="print a new X25519 keypair")

    p = sub.add_parser("register", help="publish a public key")
    p.add_argument("user_id")
    p.add_argument("public_key")

    p = sub.add_parser("send", help="seal and send a message")
    p.add_argument("sender")
    p.add_argument("to")
    p.add_argument("message")
    p.add_argument("--private-key", required=True, help="sender private key (base64)")

    p = sub.add_parser("inbox", help="drain and open a mailbox")
    p.add_argument("user_id")
    p.add_argument("--private-key", help="recipient private key (base64); omit to print raw boxes")

    p = sub.add_parser("upload", help="upload a file to the vault")
    p.add_argument("path")

    p = sub.add_parser("download", help="download a file from the vault")
    p.add_argument("storage_name")
    p.add_argument("-o", "--output", required=True)

    sub.add_parser("settings", help="show vault settings")

    p = sub.add_parser("toggle", help="flip a vault setting")
    p.add_argument("key")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    client = RelayClient(args.url)

    try:
        if args.command == "keygen":
            private_key, public_b64 = generate_keypair()
            print(json.dumps({"privateKey": private_key_b64(private_key), "publicKey": public_b64}, indent=2))
        elif args.command == "register":
            print(client.register_key(args.user_id, args.public_key))
        elif args.command == "send":
            recipient_key = client.public_key(args.to)
            box, nonce = seal_box(args.message, recipient_key, load_private_key(args.private_key))
            print(client.send(args.to, args.sender, box, nonce))
        elif args.command == "inbox":
            for envelope in client.inbox(args.user_id):
                print(_render_envelope(client, envelope, args.private_key))
        elif args.command == "upload":
            print(client.upload(args.path))
        elif args.command == "download":
            with open(args.output, "wb") as f:
                f.write(client.download(args.storage_name))
            print(f"Saved to {args.output}")
        elif args.command == "settings":
            print(client.settings())
        elif args.command == "toggle":
            print(client.toggle_setting(args.key))
    except RelayClientError as e:
        print(f"Relay error {e.status_code}: {e.reason}", file=sys.stderr)
        return 1
    except requests.RequestException as e:
        print(f"Connection to backend failed: {e}", file=sys.stderr)
        return 1
    return 0


def _render_envelope(client, envelope, private_key_text):
    if not private_key_text:
        return json.dumps(envelope)
    try:
        sender_key = client.public_key(envelope["from"])
    except RelayClientError:
        return f"[{envelope['from']}] <sealed, sender key unknown>"
    try:
        plaintext = open_box(envelope["box"], envelope["nonce"], sender_key, load_private_key(private_key_text))
    except InvalidTag:
        return f"[{envelope['from']}] <could not open box>"
    return f"[{envelope['from']}] {plaintext.decode(errors='replace')}"


if __name__ == "__main__":
    sys.exit(main())
