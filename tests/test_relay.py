"""Key directory and mailbox semantics."""
import threading

import pytest

from errors import RecipientNotFound
from relay import Envelope, KeyDirectory, MailboxStore


@pytest.fixture
def directory():
    return KeyDirectory()


@pytest.fixture
def mailbox(directory):
    return MailboxStore(directory)


def test_register_overwrites_previous_key(directory):
    directory.register("alice", "pk1")
    directory.register("alice", "pk2")
    assert directory.lookup("alice") == "pk2"
    assert len(directory) == 1


def test_lookup_unknown_user_is_none(directory):
    assert directory.lookup("nobody") is None
    assert "nobody" not in directory


def test_send_to_unregistered_recipient_fails(directory, mailbox):
    directory.register("alice", "pkA")
    with pytest.raises(RecipientNotFound):
        mailbox.send("bob", "alice", "c1", "n1")
    assert mailbox.pending_count() == 0


def test_sender_does_not_need_a_key(directory, mailbox):
    directory.register("alice", "pkA")
    mailbox.send("alice", "bob", "c1", "n1")
    assert mailbox.pending_count("alice") == 1


# alice/bob scenario: one envelope, drained exactly once
def test_fetch_drains_exactly_once(directory, mailbox):
    directory.register("alice", "pkA")
    mailbox.send(to="alice", sender="bob", box="c1", nonce="n1")

    first = mailbox.fetch_inbox("alice")
    assert [e.to_dict() for e in first] == [{"to": "alice", "from": "bob", "box": "c1", "nonce": "n1"}]
    assert mailbox.fetch_inbox("alice") == []


def test_fetch_preserves_send_order(directory, mailbox):
    directory.register("alice", "pkA")
    for i in range(20):
        mailbox.send("alice", "bob", f"c{i}", f"n{i}")
    assert [e.box for e in mailbox.fetch_inbox("alice")] == [f"c{i}" for i in range(20)]


def test_fetch_leaves_other_mailboxes_alone(directory, mailbox):
    directory.register("alice", "pkA")
    directory.register("carol", "pkC")
    mailbox.send("alice", "bob", "for-alice", "n1")
    mailbox.send("carol", "bob", "for-carol", "n2")

    assert [e.box for e in mailbox.fetch_inbox("alice")] == ["for-alice"]
    assert mailbox.pending_count("carol") == 1
    assert mailbox.fetch_inbox("carol") == [Envelope("carol", "bob", "for-carol", "n2")]


def test_fetch_unknown_user_returns_empty(mailbox):
    assert mailbox.fetch_inbox("ghost") == []


def test_concurrent_sends_and_fetches_deliver_each_envelope_once(directory, mailbox):
    directory.register("alice", "pkA")
    senders, per_sender = 4, 250
    received = []
    done = threading.Event()

    def send(sender):
        for i in range(per_sender):
            mailbox.send("alice", sender, f"{sender}-{i}", "n")

    def drain():
        while not done.is_set():
            received.extend(mailbox.fetch_inbox("alice"))

    drainer = threading.Thread(target=drain)
    drainer.start()
    threads = [threading.Thread(target=send, args=(f"s{n}",)) for n in range(senders)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    done.set()
    drainer.join()
    received.extend(mailbox.fetch_inbox("alice"))

    boxes = [e.box for e in received]
    assert len(boxes) == senders * per_sender
    assert len(set(boxes)) == len(boxes)
    # FIFO holds per sender
    for n in range(senders):
        mine = [b for b in boxes if b.startswith(f"s{n}-")]
        assert mine == [f"s{n}-{i}" for i in range(per_sender)]
