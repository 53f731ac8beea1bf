"""Tests for the knowledge-canvas CLI."""

import base64
import io
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import entity, relation

from knowledge_canvas.cli import main
from knowledge_canvas.graph.models import DomainGraph


def _blob(payload) -> str:
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


class TestViewCommands:
    """Tests for view decode/encode."""

    def test_decode(self, capsys):
        main(["view", "decode", _blob({"zoom": 2, "nodes": {"a": {"position": {"x": 1, "y": 2}}}})])

        out = json.loads(capsys.readouterr().out)
        assert out["zoom"] == 2.0
        assert out["nodes"] == {"a": {"position": {"x": 1.0, "y": 2.0}}}

    def test_decode_invalid_blob_exits(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["view", "decode", "not base64!"])

        assert exc_info.value.code == 1
        assert "Error:" in capsys.readouterr().err

    def test_encode_file(self, tmp_path, capsys):
        path = tmp_path / "view.json"
        path.write_text(json.dumps({"zoom": 1.5, "offsetX": 3}))

        main(["view", "encode", str(path)])

        blob = capsys.readouterr().out.strip()
        assert json.loads(base64.b64decode(blob)) == {"offsetX": 3.0, "zoom": 1.5}

    def test_encode_stdin(self, capsys):
        with patch("sys.stdin", io.StringIO('{"zoom": 0.5}')):
            main(["view", "encode", "-"])

        blob = capsys.readouterr().out.strip()
        assert json.loads(base64.b64decode(blob)) == {"zoom": 0.5}

    def test_encode_missing_file_exits(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main(["view", "encode", str(tmp_path / "missing.json")])

        assert exc_info.value.code == 1


class TestUsage:
    """Tests for argument handling."""

    def test_no_command_prints_help(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main([])

        assert exc_info.value.code == 1
        assert "knowledge-canvas" in capsys.readouterr().out

    def test_view_without_subcommand(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["view"])

        assert exc_info.value.code == 1


class TestFetchCommand:
    """Tests for fetch with a patched backend."""

    def test_fetch_prints_summary(self, capsys, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        graph = DomainGraph(
            container_id="ws-1",
            entities=(entity("a"), entity("b")),
            relations=(relation("r1", "a", "b"), relation("r2", "b", "a")),
            view_blob=_blob({"zoom": 1.25}),
        )
        backend = MagicMock()
        backend.fetch_domain_graph = AsyncMock(return_value=graph)
        backend.__aenter__ = AsyncMock(return_value=backend)
        backend.__aexit__ = AsyncMock(return_value=False)

        with patch("knowledge_canvas.cli.GraphQLBackend", return_value=backend):
            main(["fetch", "ws-1"])

        summary = json.loads(capsys.readouterr().out)
        assert summary["mode"] == "container"
        assert summary["nodes"] == 2
        assert summary["links"] == 1
        assert summary["relations"] == 2
        assert summary["view"] == {"zoom": 1.25}
