"""
Record stream of a single split.
"""

from typing import Iterator, Optional, Tuple

from .intervals import IntervalSet


class SplitRecordReader:
    """
    Decodes the records of one split.

    Iterating yields ``(key, record)`` pairs from the split start every time,
    where key is the encoded virtual offset of the record. ``advance`` and
    ``current`` give the same sequence as a pull interface.

    Interval-restricted splits are read chunk by chunk and each record is
    checked against the split's intervals, since index chunks are coarser
    than single records.
    """

    def __init__(self, split, source):
        self.split = split
        self.source = source
        self._intervals = IntervalSet(split.intervals) if split.intervals else None
        self._iterator: Optional[Iterator[Tuple[int, object]]] = None
        self._current: Optional[Tuple[int, object]] = None

    def _ranges(self):
        if self.split.chunks:
            for chunk in self.split.chunks:
                yield chunk.start, chunk.end
        else:
            yield self.split.start, self.split.end

    def __iter__(self) -> Iterator[Tuple[int, object]]:
        for start, end in self._ranges():
            records = self.source.records_from(start)
            try:
                for offset, record in records:
                    if offset >= end:
                        break
                    if self._intervals is not None and not self._intervals.contains_record(record):
                        continue
                    yield offset.encoded, record
            finally:
                close = getattr(records, "close", None)
                if close is not None:
                    close()

    def advance(self) -> bool:
        """Move to the next record; False once the split is exhausted."""
        if self._iterator is None:
            self._iterator = iter(self)
        try:
            self._current = next(self._iterator)
        except StopIteration:
            self._current = None
            return False
        return True

    def current_key(self) -> int:
        if self._current is None:
            raise RuntimeError("No current record, call advance() first")
        return self._current[0]

    def current(self):
        if self._current is None:
            raise RuntimeError("No current record, call advance() first")
        return self._current[1]

    def reset(self) -> None:
        """Restart from the beginning of the split."""
        self.close()

    def close(self) -> None:
        if self._iterator is not None:
            self._iterator.close()
        self._iterator = None
        self._current = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
