import io

import pytest
from colorama import Fore, Style

from posrare import DispatchStats, Renderer, build_report, find_rare_words


@pytest.fixture
def scenario_result(scenario_lines):
    return find_rare_words(scenario_lines, position=2, max_entropy=4.0)


def make_renderer(scorer, **kwargs):
    stream = io.StringIO()
    kwargs.setdefault("position", 2)
    kwargs.setdefault("color", False)
    return Renderer(scorer, stream=stream, **kwargs), stream


@pytest.mark.parametrize(
    "url,token,expected",
    [
        ("http://a.com/x/q", "q", "http://a.com/x/q"),
        ("https://a.com/x/q?id=1&b=2", "q", "https://a.com/x/q?id=1&b=2"),
        ("https://user:pw@a.com:8080/x/q#top", "q", "https://a.com:8080/x/q"),
        ("http://a.com/x/%61dmin", "admin", "http://a.com/x/admin"),
    ],
)
def test_highlight_url_without_color(scorer, url, token, expected):
    renderer, _ = make_renderer(scorer)
    assert renderer.highlight_url(url, token) == expected


def test_highlight_url_marks_first_occurrence(scorer):
    renderer, _ = make_renderer(scorer, color=True)
    highlighted = renderer.highlight_url("http://a.com/ab/b", "b")

    assert highlighted == f"http://a.com/a{Fore.RED}b{Style.RESET_ALL}/b"


def test_render_plain_output(scorer, scenario_result):
    renderer, stream = make_renderer(scenario_result.scorer)
    renderer.render(scenario_result.ranked, scenario_result.tables)

    assert stream.getvalue().splitlines() == [
        "http://a.com/x/q",
        "http://a.com/x/abc123",
    ]


def test_render_verbose_output(scenario_result):
    renderer, stream = make_renderer(
        scenario_result.scorer, verbose=True, max_entropy=4.0
    )
    renderer.render(
        scenario_result.ranked, scenario_result.tables, scenario_result.stats
    )

    assert stream.getvalue().splitlines() == [
        "Total unique words at selected position: 2",
        "Entropy level: 4.000000",
        "Skipped lines: malformed=0, out of range=0, high entropy=0",
        "Sample of 2:",
        "(Entropy at position 2: 0.00): http://a.com/x/q",
        "(Entropy at position 2: 2.58): http://a.com/x/abc123",
    ]


def test_render_verbose_colors_labels(scenario_result):
    renderer, stream = make_renderer(
        scenario_result.scorer, verbose=True, color=True
    )
    stats = DispatchStats()
    stats.malformed = 2
    renderer.render(scenario_result.ranked[:1], scenario_result.tables, stats)
    output = stream.getvalue()

    assert f"{Fore.CYAN}Total unique words at selected position{Style.RESET_ALL}" in output
    assert f"{Fore.YELLOW}Sample of 1{Style.RESET_ALL}:" in output
    assert "malformed=2" in output
    assert f"{Fore.RED}q{Style.RESET_ALL}" in output


def test_build_report(scenario_result):
    report = build_report(
        scenario_result.ranked, scenario_result.tables, scenario_result.scorer
    )

    assert list(report.columns) == ["word", "frequency", "entropy", "url"]
    assert report["word"].tolist() == ["q", "abc123"]
    assert report["frequency"].tolist() == [1, 2]
    assert report["entropy"].iloc[0] == 0.0
    assert report["entropy"].iloc[1] == pytest.approx(2.585, abs=1e-3)
    assert report["url"].tolist() == ["http://a.com/x/q", "http://a.com/x/abc123"]
