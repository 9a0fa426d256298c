import csv
import os
from typing import IO, Any, Dict, List, Optional, Protocol, Sequence


class RecordSink(Protocol):
    def open(self, columns: Sequence[str]) -> None:
        ...

    def write_row(self, row: Dict[str, Any]) -> None:
        ...

    def close(self) -> None:
        ...

    def describe(self) -> str:
        ...


class _ScopedSink:
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _project(self, row: Dict[str, Any]) -> List[Any]:
        return ["" if row.get(name) is None else row.get(name) for name in self.columns]


class InMemoryRecordSink(_ScopedSink):
    """Keeps written rows in a list, in call order."""

    def __init__(self, name: str = "memory"):
        self.name = name
        self.columns: List[str] = []
        self.rows: List[Dict[str, Any]] = []
        self.is_open = False

    def open(self, columns: Sequence[str]) -> None:
        self.columns = list(columns)
        self.rows = []
        self.is_open = True

    def write_row(self, row: Dict[str, Any]) -> None:
        if not self.is_open:
            raise RuntimeError(f"Sink '{self.name}' is not open")
        self.rows.append(dict(zip(self.columns, self._project(row))))

    def close(self) -> None:
        self.is_open = False

    def describe(self) -> str:
        return self.name


class CsvRecordSink(_ScopedSink):
    """Writes rows to a delimited file; the header is fixed at open time."""

    def __init__(self, path: str, delimiter: str = ",", encoding: str = "utf-8"):
        self.path = path
        self.delimiter = delimiter
        self.encoding = encoding
        self.columns: List[str] = []
        self._handle: Optional[IO[str]] = None
        self._writer = None

    def open(self, columns: Sequence[str]) -> None:
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        self.columns = list(columns)
        self._handle = open(self.path, "w", newline="", encoding=self.encoding)
        self._writer = csv.writer(self._handle, delimiter=self.delimiter)
        self._writer.writerow(self.columns)

    def write_row(self, row: Dict[str, Any]) -> None:
        if self._writer is None:
            raise RuntimeError(f"Sink '{self.path}' is not open")
        self._writer.writerow(self._project(row))

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
        self._handle = None
        self._writer = None

    def describe(self) -> str:
        return self.path


def read_csv_rows(path: str, encoding: str = "utf-8") -> List[Dict[str, str]]:
    with open(path, newline="", encoding=encoding) as handle:
        return [dict(row) for row in csv.DictReader(handle)]
