# Overview: Domain events published after a stock operation commits.

"""
Subscribers (realtime push, notifications, reporting) connect with blinker:

    from stockflow.signals import balance_changed

    @balance_changed.connect
    def on_balance(sender, **payload):
        ...

Payloads are plain dicts captured before commit. Events queued during a
transaction are sent only after that transaction commits and are dropped on
rollback, so subscribers never see state that did not persist. Handlers run
after commit and must not use the committing session.
"""

from __future__ import annotations

import logging

from blinker import Namespace
from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

_signals = Namespace()

movement_created = _signals.signal("stock.movement.created")
balance_changed = _signals.signal("stock.balance.changed")
movement_request_created = _signals.signal("stock.movement_request.created")
movement_request_fulfilled = _signals.signal("stock.movement_request.fulfilled")
movement_request_cancelled = _signals.signal("stock.movement_request.cancelled")
movement_request_confirmed = _signals.signal("stock.movement_request.confirmed")
stock_return_created = _signals.signal("stock.return.created")

_PENDING_KEY = "stockflow_pending_events"


def emit_after_commit(session, signal, **payload) -> None:
    """Queue signal on session; it is sent once the session commits."""
    session.info.setdefault(_PENDING_KEY, []).append((signal, payload))


@event.listens_for(Session, "after_commit")
def _dispatch_pending(session):
    pending = session.info.pop(_PENDING_KEY, [])
    for signal, payload in pending:
        try:
            signal.send("stockflow", **payload)
        except Exception:
            # Already committed: subscriber failures are logged, never raised
            logger.exception("Subscriber failed for %s", signal.name)


@event.listens_for(Session, "after_soft_rollback")
def _discard_pending(session, previous_transaction):
    if previous_transaction.parent is None:
        session.info.pop(_PENDING_KEY, None)
