from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import psycopg2


@contextmanager
def open_connection(dsn: str) -> Iterator["psycopg2.extensions.connection"]:
    """
    One connection per unit of work.

    The transaction is committed (or rolled back on error) when the block
    ends, and the connection is closed afterwards. `with conn:` alone in
    psycopg2 ends the transaction but leaves the connection open.
    """

    conn = psycopg2.connect(dsn)
    try:
        with conn:
            yield conn
    finally:
        conn.close()
