"""Tests for MemoryService envelopes and the python -m cairn entry point."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

from cairn import __main__ as cli
from cairn.api import MemoryService, Response
from cairn.config import CairnConfig, InjectionConfig, TypeInjectionConfig
from cairn.types import MemoryType

from conftest import FailingProvider, KeywordProvider


@pytest.fixture
def service(config: CairnConfig, git_project: Path, provider: KeywordProvider) -> MemoryService:
    return MemoryService(config, cwd=git_project, provider=provider)


def gotcha(title: str, content: str, **extra) -> dict:
    return {"type": "gotcha", "title": title, "content": content, **extra}


class TestResponse:
    def test_omits_empty_fields(self):
        assert Response.ok().to_dict() == {"status": "success"}
        assert Response.fail("nope").to_dict() == {"status": "error", "error": "nope"}
        assert Response.ok({"a": 1}).to_dict() == {"status": "success", "data": {"a": 1}}


class TestRecords:
    @pytest.mark.asyncio
    async def test_write_defaults_to_project_in_repo(self, service: MemoryService, git_project: Path):
        response = await service.write(gotcha("Token leak", "auth token in logs"))
        assert response.status == "success"
        assert response.data["id"] == "gotcha-token-leak"
        assert response.data["scope"] == "project"
        assert (git_project / ".cairn" / "memory" / "permanent" / "gotcha-token-leak.md").exists()

    @pytest.mark.asyncio
    async def test_write_validation_error(self, service: MemoryService):
        response = await service.write({"type": "note", "title": "", "content": "x"})
        assert response.status == "error"
        assert "type" in response.error
        assert "title" in response.error

    @pytest.mark.asyncio
    async def test_scope_warnings_reported(self, service: MemoryService):
        response = await service.write(
            {"type": "breadcrumb", "title": "Was here", "content": "trail", "scope": "global"}
        )
        assert response.status == "success"
        assert any("local scope" in w for w in response.data["warnings"])

    @pytest.mark.asyncio
    async def test_read_and_delete_walk_tiers(self, service: MemoryService, config: CairnConfig):
        await service.write(gotcha("Global one", "x", scope="global"))

        read = await service.read("gotcha-global-one")
        assert read.status == "success"
        assert read.data["scope"] == "global"

        deleted = await service.delete("gotcha-global-one")
        assert deleted.data == {"id": "gotcha-global-one", "scope": "global", "edges_removed": 0}
        assert not (config.memory_dir / "permanent" / "gotcha-global-one.md").exists()

        missing = await service.read("gotcha-global-one")
        assert missing.status == "error"
        assert "not found" in missing.error

    @pytest.mark.asyncio
    async def test_list_merges_tiers_in_precedence_order(self, service: MemoryService):
        await service.write(gotcha("Personal", "x", scope="global"))
        await service.write(gotcha("Shared", "y", scope="project"))
        await service.write(gotcha("Private", "z", scope="local"))

        response = await service.list()
        assert response.data["count"] == 3
        assert [m["scope"] for m in response.data["memories"]] == ["local", "project", "global"]

        only_project = await service.list(scope="project")
        assert [m["title"] for m in only_project.data["memories"]] == ["Shared"]
        assert (await service.list(limit=1)).data["count"] == 3

    @pytest.mark.asyncio
    async def test_enterprise_disabled_is_error_envelope(self, service: MemoryService):
        response = await service.list(scope="enterprise")
        assert response.status == "error"
        assert "disabled" in response.error

    @pytest.mark.asyncio
    async def test_tag_promote_link(self, service: MemoryService):
        await service.write({"type": "breadcrumb", "title": "Fix login", "content": "x", "scope": "local"})
        await service.write({"type": "decision", "title": "Sessions", "content": "y", "scope": "local"})

        tagged = await service.tag("breadcrumb-fix-login", ["auth"])
        assert tagged.data["tags"] == ["auth"]

        promoted = await service.promote("breadcrumb-fix-login", "learning")
        assert promoted.data == {"old_id": "breadcrumb-fix-login", "new_id": "learning-fix-login"}

        linked = await service.link("learning-fix-login", "decision-sessions", "implements")
        assert linked.data["created"] is True
        again = await service.link("learning-fix-login", "decision-sessions", "implements")
        assert again.status == "success"
        assert again.data["created"] is False

        bad = await service.link("learning-fix-login", "decision-sessions", "loves")
        assert bad.status == "error"


class TestSearch:
    @pytest.mark.asyncio
    async def test_keyword_search_across_tiers(self, service: MemoryService):
        await service.write(gotcha("Redis timeouts", "x", scope="global"))
        await service.write(gotcha("Redis", "y", scope="project"))
        response = await service.search("redis")
        assert [r["title"] for r in response.data["results"]] == ["Redis", "Redis timeouts"]

    @pytest.mark.asyncio
    async def test_semantic_search(self, service: MemoryService):
        await service.write(gotcha("Token leak", "auth token", scope="project"))
        await service.write(gotcha("Deploy freeze", "deploy", scope="global"))
        response = await service.semantic_search("auth token")
        assert [r["id"] for r in response.data["results"]] == ["gotcha-token-leak"]

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_wrapped(self, config: CairnConfig, git_project: Path):
        service = MemoryService(config, cwd=git_project, provider=FailingProvider())
        await service.write(gotcha("A", "python"))
        response = await service.semantic_search("python")
        assert response.status == "error"
        assert response.error == "semantic_search failed: embedding backend unavailable"

    @pytest.mark.asyncio
    async def test_auto_link_through_service(self, service: MemoryService):
        await service.write(gotcha("Database cache", "database cache database", scope="project"))
        response = await service.write(
            gotcha("Database cache notes", "database cache", scope="project"), auto_link=True
        )
        assert response.data["auto_linked"] == 1
        assert response.data["similar_titles"] == ["Database cache"]

        similar = await service.find_similar("gotcha-database-cache-notes")
        assert [r["id"] for r in similar.data["results"]] == ["gotcha-database-cache"]


class TestRelevant:
    @pytest.mark.asyncio
    async def test_one_provider_call_per_trigger(self, service: MemoryService, provider: KeywordProvider):
        await service.write(gotcha("Token leak", "auth token", scope="project"))

        first = await service.relevant("auth token", "edit")
        assert [m["id"] for m in first.data["memories"]] == ["gotcha-token-leak"]
        assert "Token leak" in first.data["reminder"]

        provider.calls.clear()
        second = await service.relevant("auth token", "edit")
        assert second.data["memories"] == []
        assert provider.calls == ["auth token"]

        service.reset_session()
        third = await service.relevant("auth token")
        assert len(third.data["memories"]) == 1

    @pytest.mark.asyncio
    async def test_several_enabled_types_share_one_search(
        self, config: CairnConfig, git_project: Path, provider: KeywordProvider
    ):
        config.injection = InjectionConfig(
            types={
                MemoryType.GOTCHA: TypeInjectionConfig(True, 0.2, 5),
                MemoryType.DECISION: TypeInjectionConfig(True, 0.2, 3),
                MemoryType.LEARNING: TypeInjectionConfig(True, 0.2, 2),
            }
        )
        service = MemoryService(config, cwd=git_project, provider=provider)
        await service.write(gotcha("Token leak", "auth token", scope="project"))
        await service.write({"type": "decision", "title": "Token rotation", "content": "auth token", "scope": "project"})
        await service.write({"type": "learning", "title": "Auth cache", "content": "auth token cache", "scope": "global"})

        first = await service.relevant("auth token")
        assert {m["type"] for m in first.data["memories"]} == {"gotcha", "decision", "learning"}

        provider.calls.clear()
        service.reset_session()
        again = await service.relevant("auth token")
        assert len(again.data["memories"]) == 3
        assert provider.calls == ["auth token"]

    @pytest.mark.asyncio
    async def test_bad_action(self, service: MemoryService):
        response = await service.relevant("x", "dance")
        assert response.status == "error"
        assert "action must be one of: read, edit, write, execute" in response.error


class TestTiers:
    @pytest.mark.asyncio
    async def test_move_between_tiers(self, service: MemoryService, config: CairnConfig, git_project: Path):
        await service.write(gotcha("Token leak", "auth token", scope="project"))
        moved = await service.move("gotcha-token-leak", "global")
        assert moved.status == "success"
        assert moved.data["from_scope"] == "project"
        assert moved.data["to_scope"] == "global"
        assert (config.memory_dir / "permanent" / "gotcha-token-leak.md").exists()
        assert not (git_project / ".cairn" / "memory" / "permanent" / "gotcha-token-leak.md").exists()

        read = await service.read("gotcha-token-leak")
        assert read.data["scope"] == "global"

    @pytest.mark.asyncio
    async def test_move_errors(self, service: MemoryService):
        await service.write(gotcha("Token leak", "x", scope="project"))
        same = await service.move("gotcha-token-leak", "project")
        assert same.status == "error"
        assert "same" in same.error
        assert (await service.move("gotcha-missing", "global")).status == "error"
        assert (await service.move("gotcha-token-leak", "moon")).status == "error"


class TestGraphQueries:
    @pytest.mark.asyncio
    async def test_traverse_path_impact_components(self, service: MemoryService):
        for title in ("A", "B", "C"):
            await service.write({"type": "decision", "title": title, "content": "x", "scope": "local"})
        await service.write({"type": "learning", "title": "Lone", "content": "y", "scope": "local"})
        await service.link("decision-a", "decision-b")
        await service.link("decision-b", "decision-c")

        walked = await service.traverse("decision-a")
        assert walked.data["visited"] == [
            {"id": "decision-a", "depth": 0},
            {"id": "decision-b", "depth": 1},
            {"id": "decision-c", "depth": 2},
        ]
        assert len((await service.traverse("decision-a", max_depth=1)).data["visited"]) == 2

        path = await service.path("decision-a", "decision-c")
        assert path.data["path"] == ["decision-a", "decision-b", "decision-c"]
        assert path.data["hops"] == 2
        assert (await service.path("decision-c", "decision-a")).data["path"] is None

        impact = await service.impact("decision-a")
        assert impact.data["dependents"] == ["decision-b", "decision-c"]
        assert impact.data["orphaned"] == ["decision-b"]
        assert impact.data["broken_edges"] == 1

        components = await service.components("local")
        assert components.data["count"] == 2

        assert (await service.traverse("decision-missing")).status == "error"


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_health_rebuild_sync(self, service: MemoryService, config: CairnConfig):
        health = await service.check_health("global")
        assert health.data["scope"] == "global"
        assert health.data["score"] == 40
        assert "Score: 40/100" in health.data["summary"]

        await service.write(gotcha("A", "x", scope="global"))
        (config.memory_dir / "index.json").unlink()
        rebuilt = await service.rebuild_index("global")
        assert rebuilt.data["discovered"] == 1

        synced = await service.sync("global", dry_run=True)
        assert synced.data["dry_run"] is True
        assert synced.data["added_to_index"] == []


class TestMain:
    def test_health_prints_envelope(self, tmp_path: Path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.setenv("CAIRN_MEMORY_DIR", str(tmp_path / "mem"))
        monkeypatch.setattr(sys, "argv", ["cairn", "health", "global"])
        cli.main()
        out = json.loads(capsys.readouterr().out)
        assert out["status"] == "success"
        assert out["data"]["score"] == 40

    def test_unknown_command_exits(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.setattr(sys, "argv", ["cairn", "bogus"])
        with pytest.raises(SystemExit) as exc:
            cli.main()
        assert exc.value.code == 1

    def test_components_command(self, tmp_path: Path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.setenv("CAIRN_MEMORY_DIR", str(tmp_path / "mem"))
        monkeypatch.setattr(sys, "argv", ["cairn", "components", "global"])
        cli.main()
        out = json.loads(capsys.readouterr().out)
        assert out["data"] == {"count": 0, "components": []}
