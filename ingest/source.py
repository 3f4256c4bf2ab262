import csv
from itertools import islice
from typing import Iterator, NamedTuple


class SourceRow(NamedTuple):
    offset: int  # 0-based position among data rows (header excluded)
    name: str
    hex_color: str
    marker: str


def read_rows(path: str, start: int = 0, stop: int = None) -> Iterator[SourceRow]:
    """Yield data rows [start, stop) of a name,hex,marker CSV file.

    Ranges can be chained: the stop of one call is the start of the next.
    A start past the end yields nothing and stop is clamped to the file.
    """
    if start < 0 or (stop is not None and stop < start):
        raise ValueError(f"Invalid row range [{start}, {stop})")
    with open(path, "r", encoding="utf-8", newline="") as f:
        reader = csv.reader(f)
        next(reader, None)  # header
        for offset, fields in enumerate(islice(reader, start, stop), start=start):
            fields = (fields + ["", "", ""])[:3]
            yield SourceRow(offset, *fields)


def count_rows(path: str) -> int:
    with open(path, "r", encoding="utf-8", newline="") as f:
        return max(sum(1 for _ in csv.reader(f)) - 1, 0)
