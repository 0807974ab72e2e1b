import pytest

from posrare import AggregateTables, EntropyScorer


@pytest.fixture
def scorer():
    """Fresh entropy scorer with an empty cache."""
    return EntropyScorer()


@pytest.fixture
def tables():
    return AggregateTables()


@pytest.fixture
def scenario_lines():
    """Two occurrences of a six-character word and one single-letter word."""
    return [
        "http://a.com/x/abc123",
        "http://a.com/x/abc123",
        "http://a.com/x/q",
    ]


@pytest.fixture
def url_file(tmp_path):
    """Write lines to a temporary file and return its path."""

    def _write(lines):
        path = tmp_path / "urls.txt"
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return str(path)

    return _write
