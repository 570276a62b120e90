import itertools
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, List, Optional

from pydantic import ValidationError

from db_models import Contact, LinkPrecedence
from errors import ContactNotFound, DataIntegrityError
from settings import settings

logger = logging.getLogger(__name__)


def init_db(db_name: Optional[str] = None):
    conn = sqlite3.connect(db_name or settings.db_name)
    cursor = conn.cursor()

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS Contact (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            phoneNumber TEXT,
            email TEXT,
            linkedId INTEGER,
            linkPrecedence TEXT CHECK(linkPrecedence IN ('secondary', 'primary')),
            createdAt DATETIME DEFAULT CURRENT_TIMESTAMP,
            updatedAt DATETIME DEFAULT CURRENT_TIMESTAMP,
            deletedAt DATETIME,
            FOREIGN KEY (linkedId) REFERENCES Contact (id)
        )
    ''')
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_email ON Contact (email)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_phone ON Contact (phoneNumber)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_linked ON Contact (linkedId)")
    conn.commit()

    conn.close()

def get_db_connection(db_name: Optional[str] = None):
    # Autocommit mode; transactions are opened explicitly by ContactStore.atomic()
    conn = sqlite3.connect(
        db_name or settings.db_name,
        timeout=settings.db_timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    return conn


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _placeholders(values: List) -> str:
    return ", ".join("?" for _ in values)


def _to_contact(row: sqlite3.Row) -> Contact:
    try:
        return Contact(**dict(row))
    except ValidationError as exc:
        raise DataIntegrityError(
            f"Contact {row['id']} has malformed columns: {exc.error_count()} errors",
            row["id"],
        ) from exc


def _oldest_first(contacts: Iterable[Contact]) -> List[Contact]:
    return sorted(contacts, key=lambda c: (c.createdAt, c.id))


class ContactStore:
    """Contact table access over a single connection.

    Reads never return soft-deleted rows. Writes outside ``atomic()`` commit
    immediately.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._savepoints = itertools.count(1)

    def find_many(
        self,
        *,
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
        ids: Optional[Iterable[int]] = None,
        linked_ids: Optional[Iterable[int]] = None,
    ) -> List[Contact]:
        """Return contacts matching ANY of the given filters, oldest first.

        Filters left as None are ignored; with no filter at all nothing matches.
        """
        clauses = []
        params = []

        if email is not None:
            clauses.append("email = ?")
            params.append(email)
        if phone_number is not None:
            clauses.append("phoneNumber = ?")
            params.append(phone_number)
        if ids is not None:
            ids = list(ids)
            if ids:
                clauses.append(f"id IN ({_placeholders(ids)})")
                params.extend(ids)
        if linked_ids is not None:
            linked_ids = list(linked_ids)
            if linked_ids:
                clauses.append(f"linkedId IN ({_placeholders(linked_ids)})")
                params.extend(linked_ids)

        if not clauses:
            return []

        query = f"""
            SELECT * FROM Contact
            WHERE deletedAt IS NULL
            AND ({" OR ".join(clauses)})
        """
        rows = self.conn.execute(query, params).fetchall()
        return _oldest_first(_to_contact(row) for row in rows)

    def find_by_id_or_fail(self, contact_id: int) -> Contact:
        row = self.conn.execute(
            "SELECT * FROM Contact WHERE id = ? AND deletedAt IS NULL",
            (contact_id,)
        ).fetchone()
        if row is None:
            raise ContactNotFound(contact_id)
        return _to_contact(row)

    def cluster_members(self, primary_id: int, max_depth: Optional[int] = None) -> List[Contact]:
        """The primary plus every contact linked to it, directly or through
        other members (legacy chains), oldest first.

        Raises DataIntegrityError when links nest deeper than max_depth.
        """
        max_depth = max_depth or settings.max_link_depth
        members = self.find_many(ids=[primary_id])
        seen = {c.id for c in members}
        frontier = [primary_id]
        depth = 0

        while frontier:
            linked = [c for c in self.find_many(linked_ids=frontier) if c.id not in seen]
            if not linked:
                break
            depth += 1
            if depth > max_depth:
                raise DataIntegrityError(
                    f"Cluster {primary_id} nests links deeper than {max_depth} levels",
                    primary_id,
                )
            members.extend(linked)
            seen.update(c.id for c in linked)
            frontier = [c.id for c in linked]

        return _oldest_first(members)

    def create(
        self,
        *,
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
        linked_id: Optional[int] = None,
        link_precedence: LinkPrecedence = LinkPrecedence.PRIMARY,
        contact_id: Optional[int] = None,
    ) -> Contact:
        now = _now()
        precedence = LinkPrecedence(link_precedence).value

        if contact_id is not None:
            self.conn.execute("""
                INSERT INTO Contact (id, phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (contact_id, phone_number, email, linked_id, precedence, now, now))
            result_id = contact_id
        else:
            cursor = self.conn.execute("""
                INSERT INTO Contact (phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (phone_number, email, linked_id, precedence, now, now))
            result_id = cursor.lastrowid

        return self.find_by_id_or_fail(result_id)

    def update_many(
        self,
        ids: Iterable[int],
        *,
        linked_id: Optional[int],
        link_precedence: LinkPrecedence,
    ) -> int:
        """Repoint the given contacts; returns the number of rows changed."""
        ids = list(ids)
        if not ids:
            return 0

        cursor = self.conn.execute(f"""
            UPDATE Contact
            SET linkedId = ?, linkPrecedence = ?, updatedAt = ?
            WHERE id IN ({_placeholders(ids)})
        """, (linked_id, LinkPrecedence(link_precedence).value, _now(), *ids))
        return cursor.rowcount

    @contextmanager
    def atomic(self) -> Iterator["ContactStore"]:
        """Group writes into one unit; nested calls become savepoints.

        The outermost unit takes the database write lock up front
        (BEGIN IMMEDIATE) so concurrent units run one after another.
        """
        if self.conn.in_transaction:
            name = f"sp_{next(self._savepoints)}"
            self.conn.execute(f"SAVEPOINT {name}")
            try:
                yield self
            except BaseException:
                self.conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
                self.conn.execute(f"RELEASE SAVEPOINT {name}")
                raise
            else:
                self.conn.execute(f"RELEASE SAVEPOINT {name}")
        else:
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self
            except BaseException:
                self.conn.execute("ROLLBACK")
                logger.debug("Rolled back contact transaction")
                raise
            else:
                self.conn.execute("COMMIT")
