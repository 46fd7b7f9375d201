# relay.py
"""Public-key directory and per-recipient mailboxes.

The server never opens an envelope: ``box`` and ``nonce`` are whatever the
sender produced client-side and are handed back to the recipient verbatim.
"""
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from errors import RecipientNotFound


@dataclass(frozen=True)
class Envelope:
    to: str
    sender: str
    box: str
    nonce: str

    def to_dict(self) -> Dict[str, str]:
        return {"to": self.to, "from": self.sender, "box": self.box, "nonce": self.nonce}


class KeyDirectory:
    """userId -> public key. Last write wins, nothing is ever removed."""

    def __init__(self):
        self._keys: Dict[str, str] = {}
        self._lock = threading.Lock()

    def register(self, user_id: str, public_key: str) -> None:
        with self._lock:
            self._keys[user_id] = public_key

    def lookup(self, user_id: str) -> Optional[str]:
        return self._keys.get(user_id)

    def __contains__(self, user_id):
        return user_id in self._keys

    def __len__(self):
        return len(self._keys)


class MailboxStore:
    def __init__(self, directory: KeyDirectory):
        self.directory = directory
        self._mailboxes: Dict[str, List[Envelope]] = {}
        self._lock = threading.Lock()

    def send(self, to: str, sender: str, box: str, nonce: str) -> Envelope:
        """Queue an envelope for ``to``; the recipient must have a registered key."""
        if self.directory.lookup(to) is None:
            raise RecipientNotFound()
        envelope = Envelope(to=to, sender=sender, box=box, nonce=nonce)
        with self._lock:
            self._mailboxes.setdefault(to, []).append(envelope)
        return envelope

    def fetch_inbox(self, user_id: str) -> List[Envelope]:
        """Drain the mailbox of ``user_id``.

        Envelopes come back in the order they were sent and are removed in
        the same locked step, so each one is delivered at most once. A send
        racing with the drain either makes it into this batch or stays
        queued for the next fetch.
        """
        with self._lock:
            return self._mailboxes.pop(user_id, [])

    def pending_count(self, user_id: Optional[str] = None) -> int:
        with self._lock:
            if user_id is not None:
                return len(self._mailboxes.get(user_id, ()))
            return sum(len(queued) for queued in self._mailboxes.values())
