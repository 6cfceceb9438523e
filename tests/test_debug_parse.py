import json

import pytest

from fakes import article_html
from tools import debug_parse


@pytest.fixture(autouse=True)
def _offline(default_fetcher):
    yield


def test_strategy_only(capsys):
    assert debug_parse.main(["https://gist.github.com/octocat/abc", "--strategy-only"]) == 0

    assert capsys.readouterr().out.strip().splitlines()[-1] == "GitHub Gist"


def test_invalid_url_exits_with_usage_error(capsys):
    assert debug_parse.main(["ftp://example.com/file"]) == 2

    assert "Invalid URL" in capsys.readouterr().err


def test_parse_saved_html(tmp_path, capsys, fake_session):
    saved = tmp_path / "page.html"
    saved.write_text(article_html(2000), encoding="utf-8")

    assert debug_parse.main(["https://example.com/history/valley", "--html", str(saved)]) == 0

    out = capsys.readouterr().out
    # Log lines may share stdout; the result is the indented document at the end.
    payload = json.loads(out[out.rindex("{\n  \"type\""):])
    assert payload["fetchMethod"] == "readability"
    assert payload["type"] == "article"
    assert fake_session.calls == []
