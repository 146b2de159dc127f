import polars as pl
import pytest


METADATA_LINES = [
    '"Data Provider","The Paleobiology Database"',
    '"Data Source","The Paleobiology Database"',
    '"Data License","Creative Commons CC-BY"',
    '"License URL","https://creativecommons.org/licenses/by/4.0/"',
    '"Data URL","http://paleobiodb.org/data1.2/occs/list.csv?base_name=Crocodylia&interval=Paleogene"',
    '"Access Time","Thu 2025-01-30 10:12:53 GMT"',
    '"Parameters:"',
    '"","base_name","Crocodylia"',
    '"","interval","Paleogene"',
    '"Records:","{count}"',
]
HEADER_LINES = len(METADATA_LINES)

COLUMNS = ["occurrence_no", "collection_no", "accepted_name", "cc", "lat", "lng"]

ROWS = [
    ["1001", "10", "Crocodylus niloticus", "NA", "-22.5", "17.1"],
    ["1002", "11", "Diplocynodon hantoniensis", "GB", "50.7", "-1.5"],
    ["1003", "12", "Borealosuchus", "US", "", ""],
    ["1004", "10", "Crocodylus niloticus", "NA", "-22.5", "17.1"],
]


def build_export(columns, rows, record_count=None, metadata=True):
    lines = []
    if metadata:
        count = len(rows) if record_count is None else record_count
        lines.extend(line.replace("{count}", str(count)) for line in METADATA_LINES)
    lines.append(",".join(f'"{c}"' for c in columns))
    lines.extend(",".join(row) for row in rows)
    return "\n".join(lines) + "\n"


@pytest.fixture
def write_export(tmp_path):
    """Write a PBDB-style export and return its path."""
    def _write(columns=COLUMNS, rows=ROWS, record_count=None, metadata=True, name="occs.csv"):
        path = tmp_path / name
        path.write_text(build_export(columns, rows, record_count, metadata), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def occurrences():
    return pl.DataFrame({
        "collection_no": [10, 11, 12, 13, 14, 15],
        "accepted_name": [
            "Crocodylus niloticus", "Diplocynodon hantoniensis", "Borealosuchus",
            "Crocodilus niloticus", "Alligator mississippiensis", "Diplocynodon hantoniensis",
        ],
        "genus": ["Crocodylus", "Diplocynodon", "Borealosuchus", "Crocodilus", "Alligator", "Diplocynodon"],
        "cc": ["NA", "GB", "US", "NA", "US", "FR"],
        "lat": [-22.5, 50.7, None, -20.1, 35.0, 45.2],
        "lng": [17.1, -1.5, None, 15.3, -90.0, 2.3],
    })
