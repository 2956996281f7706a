"""Tests for prompt pack loading, agent name resolution and agent card generation."""

import json

import pytest

from agentcore_bridge.errors import PackError
from agentcore_bridge.pack import PromptPack, build_agent_card, load_pack, resolve_agent_name
from conftest import PACK, make_settings

URL = "http://127.0.0.1:9000/a2a"


def multi_agent_pack(**agents):
    pack = dict(PACK)
    pack["prompts"] = {
        "planner": {"id": "planner", "name": "Planner", "description": "Plans work"},
        "coder": {"id": "coder", "name": "Coder", "description": "Writes code"},
    }
    if agents:
        pack["agents"] = agents
    return PromptPack.model_validate(pack)


class TestLoadPack:
    def test_inline_json(self):
        pack = load_pack(make_settings())
        assert pack.id == "test-pack"
        assert pack.version == "1.0.0"
        assert list(pack.prompts) == ["agent"]

    def test_file_wins_over_inline(self, tmp_path):
        pack_file = tmp_path / "pack.json"
        pack_file.write_text(json.dumps({**PACK, "id": "from-file"}))

        pack = load_pack(make_settings(pack_file=str(pack_file)))

        assert pack.id == "from-file"

    def test_missing_file(self, tmp_path):
        with pytest.raises(PackError, match="cannot read pack file"):
            load_pack(make_settings(pack_file=str(tmp_path / "missing.json")))

    @pytest.mark.parametrize("raw", ["{not json", "[]", '{"prompts": []}'])
    def test_invalid_pack(self, raw):
        with pytest.raises(PackError, match="invalid prompt pack"):
            load_pack(make_settings(pack_json=raw))

    def test_no_source(self):
        with pytest.raises(PackError, match="no prompt pack configured"):
            load_pack(make_settings(pack_json=None))


class TestResolveAgentName:
    def test_env_wins(self):
        pack = multi_agent_pack(entry="planner")
        assert resolve_agent_name(make_settings(agent_name="coder"), pack) == "coder"

    def test_pack_entry(self):
        assert resolve_agent_name(make_settings(), multi_agent_pack(entry="planner")) == "planner"

    def test_single_prompt(self):
        assert resolve_agent_name(make_settings(), PromptPack.model_validate(PACK)) == "agent"

    def test_ambiguous_pack(self):
        with pytest.raises(PackError) as exc_info:
            resolve_agent_name(make_settings(), multi_agent_pack())

        message = str(exc_info.value)
        assert "PROMPTPACK_AGENT" in message
        assert "agents.entry" in message
        assert "exactly one prompt" in message


class TestBuildAgentCard:
    def test_member_card(self):
        pack = multi_agent_pack(
            entry="planner",
            members={"planner": {"description": "Plans multi-step work", "tags": ["planning"]}},
        )

        card = build_agent_card(pack, "planner", URL)

        assert card.name == "planner"
        assert card.description == "Plans multi-step work"
        assert card.url == URL
        assert card.version == "1.0.0"
        assert card.capabilities.streaming is True
        assert len(card.skills) == 1
        assert card.skills[0].name == "Planner"
        assert card.skills[0].tags == ["planning"]

    def test_fallback_card(self):
        card = build_agent_card(PromptPack.model_validate(PACK), "agent", URL)

        assert card.name == "agent"
        assert card.description == "Answers test questions"
        assert card.version == "1.0.0"
        assert card.skills == []

    def test_fallback_for_unknown_agent(self):
        card = build_agent_card(PromptPack.model_validate(PACK), "ghost", URL)
        assert card.name == "ghost"
        assert card.description == ""
