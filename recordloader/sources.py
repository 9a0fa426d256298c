import csv
from typing import IO, Iterable, Iterator, List, Optional, Protocol

from .models import Record


class RecordSource(Protocol):
    columns: List[str]

    def open(self) -> None:
        ...

    def has_next(self) -> bool:
        ...

    def next(self) -> Record:
        ...

    def close(self) -> None:
        ...


class _ScopedSource:
    """Context manager and iterator plumbing shared by the sources."""

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __iter__(self) -> Iterator[Record]:
        while self.has_next():
            yield self.next()


class InMemoryRecordSource(_ScopedSource):
    """Serves records from a list; re-opening restarts from the first one."""

    def __init__(self, records: Iterable[Record], columns: Optional[List[str]] = None):
        self.records: List[Record] = [dict(r) for r in records]
        if columns is None:
            columns = []
            for record in self.records:
                columns.extend(name for name in record if name not in columns)
        self.columns = list(columns)
        self._cursor: Optional[int] = None

    def open(self) -> None:
        self._cursor = 0

    def has_next(self) -> bool:
        if self._cursor is None:
            raise RuntimeError("Source is not open")
        return self._cursor < len(self.records)

    def next(self) -> Record:
        if not self.has_next():
            raise StopIteration
        record = dict(self.records[self._cursor])
        self._cursor += 1
        return record

    def close(self) -> None:
        self._cursor = None

    def describe(self) -> str:
        return f"memory:{len(self.records)} records"


class CsvRecordSource(_ScopedSource):
    """Reads records from a delimited file with a header row."""

    def __init__(self, path: str, delimiter: str = ",", encoding: str = "utf-8"):
        self.path = path
        self.delimiter = delimiter
        self.encoding = encoding
        self.columns: List[str] = []
        self._handle: Optional[IO[str]] = None
        self._reader: Optional[Iterator[dict]] = None
        self._pending: Optional[Record] = None

    def open(self) -> None:
        self.close()
        self._handle = open(self.path, newline="", encoding=self.encoding)
        reader = csv.DictReader(self._handle, delimiter=self.delimiter)
        self.columns = list(reader.fieldnames or [])
        self._reader = iter(reader)
        self._pending = None

    def has_next(self) -> bool:
        if self._reader is None:
            raise RuntimeError("Source is not open")
        if self._pending is None:
            row = next(self._reader, None)
            if row is None:
                return False
            self._pending = {name: row.get(name) or "" for name in self.columns}
        return True

    def next(self) -> Record:
        if not self.has_next():
            raise StopIteration
        record, self._pending = self._pending, None
        return record

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
        self._handle = None
        self._reader = None
        self._pending = None

    def describe(self) -> str:
        return self.path
