from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from sqlalchemy import Column, Integer, LargeBinary, String, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .codec import decode_invoice, encode_invoice
from .errors import Communicate, DeserializeError, NotFound
from .invoice import Invoice

logger = logging.getLogger(__name__)


class InvoiceStore(ABC):
    """
    Keyed invoice collection shared by the gateway and the poller.

    Implementations serialize their own mutations; callers need no locking.
    Every invoice handed out is a private copy.
    """

    @abstractmethod
    def get(self, key: str) -> Invoice:
        ...

    @abstractmethod
    def get_all(self) -> List[Tuple[str, Invoice]]:
        """All entries in insertion order."""

    @abstractmethod
    def get_latest(self) -> Tuple[str, Invoice]:
        ...

    @abstractmethod
    def set(self, key: str, invoice: Invoice) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class MemoryInvoiceStore(InvoiceStore):
    """Volatile store. A crash loses every pending invoice and its key."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._invoices: Dict[str, Invoice] = {}

    def get(self, key: str) -> Invoice:
        with self._lock:
            invoice = self._invoices.get(key)
            if invoice is None:
                raise NotFound(key)
            return invoice.copy()

    def get_all(self) -> List[Tuple[str, Invoice]]:
        with self._lock:
            return [(key, invoice.copy()) for key, invoice in self._invoices.items()]

    def get_latest(self) -> Tuple[str, Invoice]:
        with self._lock:
            if not self._invoices:
                raise NotFound()
            key = next(reversed(self._invoices))
            return key, self._invoices[key].copy()

    def set(self, key: str, invoice: Invoice) -> None:
        with self._lock:
            previous = self._invoices.get(key)
            self._invoices[key] = invoice.copy()
        if previous is not None:
            previous.wallet.wipe()

    def delete(self, key: str) -> None:
        with self._lock:
            invoice = self._invoices.pop(key, None)
        if invoice is None:
            raise NotFound(key)
        invoice.wallet.wipe()

    def __len__(self) -> int:
        with self._lock:
            return len(self._invoices)


Base = declarative_base()


class InvoiceRow(Base):
    __tablename__ = "invoices"
    seq = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(64), unique=True, index=True, nullable=False)
    data = Column(LargeBinary, nullable=False)  # codec.encode_invoice


class SqlInvoiceStore(InvoiceStore):
    """
    Durable store on any SQLAlchemy URL.

    Invoices survive a restart and are picked up by the next poller pass, which
    also means every pending private key sits on disk until its invoice is
    deleted.
    """

    def __init__(self, database_url: str) -> None:
        kwargs = {}
        if database_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, **kwargs)
        self._Session = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self._lock = threading.Lock()
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise Communicate(f"Could not initialise invoice table: {exc}") from exc

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._Session()
        try:
            yield session
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("Db interaction error: %s", exc)
            raise Communicate(f"Could not communicate with database: {exc}") from exc
        finally:
            session.close()

    def get(self, key: str) -> Invoice:
        with self._session() as session:
            row = session.query(InvoiceRow).filter(InvoiceRow.key == key).one_or_none()
            if row is None:
                raise NotFound(key)
            data = row.data
        return decode_invoice(data)

    def get_all(self) -> List[Tuple[str, Invoice]]:
        """
        Every decodable entry in insertion order. Undecodable rows are logged
        and skipped; they stay in the table so the key can be recovered by hand.
        """
        with self._session() as session:
            rows = [(row.key, row.data) for row in session.query(InvoiceRow).order_by(InvoiceRow.seq).all()]
        invoices = []
        for key, data in rows:
            try:
                invoices.append((key, decode_invoice(data)))
            except DeserializeError as exc:
                logger.error("Skipping unreadable invoice %s: %s", key, exc)
        return invoices

    def get_latest(self) -> Tuple[str, Invoice]:
        with self._session() as session:
            row = session.query(InvoiceRow).order_by(InvoiceRow.seq.desc()).first()
            if row is None:
                raise NotFound()
            key, data = row.key, row.data
        return key, decode_invoice(data)

    def set(self, key: str, invoice: Invoice) -> None:
        data = encode_invoice(invoice)
        with self._lock, self._session() as session:
            row = session.query(InvoiceRow).filter(InvoiceRow.key == key).one_or_none()
            if row is None:
                session.add(InvoiceRow(key=key, data=data))
            else:
                row.data = data
            session.commit()

    def delete(self, key: str) -> None:
        with self._lock, self._session() as session:
            deleted = session.query(InvoiceRow).filter(InvoiceRow.key == key).delete()
            session.commit()
        if not deleted:
            raise NotFound(key)


def make_store(database_url: Optional[str] = None) -> InvoiceStore:
    if database_url:
        return SqlInvoiceStore(database_url)
    return MemoryInvoiceStore()
