"""
BaseService -- abstract base for kernel and orchestration services.

Responsibility:
    Common constructor and session contract.  Services receive a SQLAlchemy
    ``Session`` and persist with ``session.flush()``, never
    ``session.commit()``.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit.  Savepoints opened with
      ``session.begin_nested()`` are the only transaction control a
      service uses, and always close before the service returns.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only queries; those belong in selectors.
    """

    def __init__(self, session: Session):
        self.session = session
