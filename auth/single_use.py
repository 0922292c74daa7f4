"""
auth/single_use.py -- Generic single-use, hashed, time-boxed token flow.

One parameterized component backs password reset, email confirmation and
organization invites, so the three flows cannot drift apart:

    flow = SingleUseTokenFlow(engine, password_resets, name="password_reset",
                              ttl=timedelta(hours=1), hasher=hasher,
                              subject_columns=("user_id",))
    raw = flow.issue({"user_id": uid})          # embed raw in a link, once
    record = flow.consume(raw, on_consumed=...)  # exactly one caller wins

State machine per token: issued -> consumed | expired (both terminal).

Security design:
  - Only lookup digests are stored. The raw secret (256 bits from `secrets`)
    leaves the process once, inside the emailed link, and is never logged.
  - issue() first marks every outstanding token of the same subject as used
    (or superseded, for flows that keep the two apart),
    so each subject has at most one live secret per flow.
  - consume() runs an optional guard against the live record (e.g. invite
    email match) BEFORE consuming, so a rejected caller does not burn the
    token. The consumption itself is one conditional UPDATE on
    "used IS NULL AND expires_at > now"; rowcount 0 means another caller got
    there first or the token expired in between.
  - The consumption mark is committed before on_consumed runs. If the side
    effect then fails the token stays consumed: a half-finished action is
    repaired by support, never by replaying the link.

Layer rule: no imports from api/ or orgs/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import timedelta

from sqlalchemy import Table, and_
from sqlalchemy.engine import Engine

from auth.errors import InvalidOrExpiredToken
from auth.hashing import SecretHasher
from auth.store import isoformat, utcnow

logger = logging.getLogger("sendrec.auth.single_use")

Record = dict


class SingleUseTokenFlow:
    """Issue and consume one kind of single-use token stored in `table`.

    subject_columns names the columns that identify whose token it is; they
    scope the invalidation done by issue(). used_column is the nullable
    consumption timestamp (used_at, or accepted_at for invites).
    superseded_column, when given, receives the timestamp issue() writes to
    invalidate older tokens, so a replaced token is not recorded as used.
    """

    def __init__(
        self,
        engine: Engine,
        table: Table,
        *,
        name: str,
        ttl: timedelta,
        hasher: SecretHasher,
        subject_columns: Iterable[str],
        used_column: str = "used_at",
        superseded_column: str | None = None,
        failure_message: str = "invalid or expired link",
    ) -> None:
        self.engine = engine
        self.table = table
        self.name = name
        self.ttl = ttl
        self._hasher = hasher
        self._subject_columns = tuple(subject_columns)
        self._used = table.c[used_column]
        self._superseded = table.c[superseded_column] if superseded_column else None
        # Column issue() stamps on the older tokens it replaces.
        self._invalidated = self._superseded if self._superseded is not None else self._used
        self._failure_message = failure_message
        for col in self._subject_columns:
            if col not in table.c:
                raise ValueError(f"{table.name} has no subject column {col!r}")

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(self, subject: Mapping[str, object], ttl: timedelta | None = None, **extra) -> str:
        """Invalidate the subject's outstanding tokens, store a new digest, return the raw secret."""
        self._check_subject(subject)
        raw = self._hasher.new_secret()
        now = utcnow()
        with self.engine.connect() as conn:
            conn.execute(
                self.table.update()
                .where(
                    and_(
                        self._subject_clause(subject),
                        self._unused_clause(),
                        self.table.c.expires_at > isoformat(now),
                    )
                )
                .values({self._invalidated.name: isoformat(now)})
            )
            conn.execute(
                self.table.insert().values(
                    token_hash=self._hasher.digest(raw),
                    expires_at=isoformat(now + (ttl if ttl is not None else self.ttl)),
                    created_at=isoformat(now),
                    **dict(subject),
                    **extra,
                )
            )
            conn.commit()
        logger.info("%s token issued", self.name)
        return raw

    # ------------------------------------------------------------------
    # Consume
    # ------------------------------------------------------------------

    def peek(self, raw: str) -> Record | None:
        """Return the live record for a raw secret without consuming it."""
        if not raw:
            return None
        token_hash = self._hasher.digest(raw)
        with self.engine.connect() as conn:
            row = conn.execute(self.table.select().where(self._live_clause(token_hash))).fetchone()
        return dict(row._mapping) if row is not None else None

    def consume(
        self,
        raw: str,
        guard: Callable[[Record], None] | None = None,
        on_consumed: Callable[[Record], None] | None = None,
    ) -> Record:
        """Exchange a raw secret for its record exactly once.

        Raises InvalidOrExpiredToken if the secret is unknown, used or expired.
        Exceptions raised by guard propagate and leave the token live.
        Exceptions raised by on_consumed propagate after the token is consumed.
        """
        record = self.peek(raw)
        if record is None:
            raise InvalidOrExpiredToken(self._failure_message)
        if guard is not None:
            guard(record)

        token_hash = record["token_hash"]
        with self.engine.connect() as conn:
            result = conn.execute(
                self.table.update().where(self._live_clause(token_hash)).values({self._used.name: isoformat(utcnow())})
            )
            conn.commit()
        if result.rowcount == 0:
            raise InvalidOrExpiredToken(self._failure_message)
        logger.info("%s token consumed", self.name)

        if on_consumed is not None:
            try:
                on_consumed(record)
            except Exception:
                logger.error("%s: token consumed but follow-up action failed", self.name)
                raise
        return record

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def outstanding(self, subject: Mapping[str, object]) -> list[Record]:
        """Return the subject's live (unused, unexpired) records."""
        self._check_subject(subject)
        with self.engine.connect() as conn:
            rows = conn.execute(
                self.table.select().where(
                    and_(
                        self._subject_clause(subject),
                        self._unused_clause(),
                        self.table.c.expires_at > isoformat(utcnow()),
                    )
                )
            ).fetchall()
        return [dict(r._mapping) for r in rows]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_subject(self, subject: Mapping[str, object]) -> None:
        if set(subject) != set(self._subject_columns):
            raise ValueError(f"{self.name} subject must be exactly {self._subject_columns}")

    def _subject_clause(self, subject: Mapping[str, object]):
        return and_(*(self.table.c[col] == subject[col] for col in self._subject_columns))

    def _unused_clause(self):
        if self._superseded is None:
            return self._used.is_(None)
        return and_(self._used.is_(None), self._superseded.is_(None))

    def _live_clause(self, token_hash: str):
        return and_(
            self.table.c.token_hash == token_hash,
            self._unused_clause(),
            self.table.c.expires_at > isoformat(utcnow()),
        )
