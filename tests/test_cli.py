"""Tests for the docrag CLI commands that need no database."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

from typer.testing import CliRunner

from docrag.cli import _guess_mime_type, app
from docrag.errors import CacheUnavailableError
from docrag.models import RAGResponse

runner = CliRunner()


class TestTemplateBuild:
    """Tests for the template-build command."""

    def test_writes_profile(self, tmp_path, pdf_bytes):
        sample = tmp_path / "sample.pdf"
        sample.write_bytes(pdf_bytes)
        out_dir = tmp_path / "profiles"

        result = runner.invoke(
            app,
            ["template-build", str(sample), "--id", "release-form", "--output-dir", str(out_dir)],
        )

        assert result.exit_code == 0, result.output
        profile = json.loads((out_dir / "release-form.json").read_text(encoding="utf-8"))
        assert profile["id"] == "release-form"
        assert profile["matchThreshold"] == 0.65
        assert profile["sampledPages"][0]["page"] == 1
        assert profile["metadata"]["source"] == "sample.pdf"


class TestGuessMimeType:
    def test_known_types(self):
        assert _guess_mime_type(Path("notes.md")) == "text/markdown"
        assert _guess_mime_type(Path("guide.PDF")) == "application/pdf"
        assert _guess_mime_type(Path("readme.txt")) == "text/plain"
        assert _guess_mime_type(Path("blob")) == "application/octet-stream"


class TestAsk:
    """Tests for the ask command."""

    def test_owner_scopes_retrieval(self):
        orchestrator = MagicMock()
        orchestrator.answer = AsyncMock(return_value=RAGResponse(response="Gate checks tests [1]."))

        with patch("docrag.runtime.get_orchestrator", return_value=orchestrator), \
                patch("docrag.cli.close_db", new=AsyncMock()):
            result = runner.invoke(app, ["ask", "What does the gate check?", "--owner", "bob"])

        assert result.exit_code == 0, result.output
        query, config = orchestrator.answer.await_args.args
        assert query == "What does the gate check?"
        assert config.search.owner_id == "bob"
        assert orchestrator.answer.await_args.kwargs["owner_id"] == "bob"


class TestCacheCommands:
    """Tests for cache maintenance commands."""

    def test_sweep_reports_unavailable_cache(self):
        cache = MagicMock()
        cache.clear_expired = AsyncMock(side_effect=CacheUnavailableError("connection refused"))

        with patch("docrag.runtime.get_cache", return_value=cache), \
                patch("docrag.cli.close_db", new=AsyncMock()):
            result = runner.invoke(app, ["cache-sweep"])

        assert result.exit_code == 1
        assert "Cache sweep failed" in result.output
