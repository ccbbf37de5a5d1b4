import pytest

from funnelchat.services.errors import FunnelValidationError, ValidationError
from funnelchat.services.funnel_graph import FunnelGraph


def minimal_flow(**overrides):
    flow = {
        "startBlockId": "a",
        "stages": [{"name": "WELCOME", "blockIds": ["a"]}],
        "blocks": {
            "a": {"message": "Hi", "options": [{"text": "Next", "nextBlockId": "b"}]},
            "b": {"message": "Bye", "options": [{"text": "End"}]},
        },
    }
    flow.update(overrides)
    return flow


class TestParsing:
    def test_parses_camel_case_keys(self, graph):
        assert graph.start_block_id == "start"
        assert graph.blocks["offer_1"].resource_name == "Free Guide"
        assert graph.blocks["start"].options[0].next_block_id == "info"
        assert graph.stages[0].block_ids == ("start", "info")

    def test_block_ids_copied_from_keys(self, graph):
        assert graph.blocks["value_1"].id == "value_1"

    def test_option_without_next_block_is_terminal(self, graph):
        terminal = graph.blocks["info"].options[2]
        assert terminal.is_terminal is True
        assert graph.blocks["info"].options[0].is_terminal is False

    def test_options_keep_declared_order(self, graph):
        assert [o.text for o in graph.blocks["info"].options] == ["Continue", "Back to start", "I'm done"]

    def test_graph_is_immutable(self, graph):
        with pytest.raises(Exception):
            graph.start_block_id = "info"


class TestValidation:
    def test_missing_start_block(self):
        with pytest.raises(FunnelValidationError):
            FunnelGraph.from_flow(minimal_flow(startBlockId="zzz"))

    def test_dangling_option_reference(self):
        flow = minimal_flow()
        flow["blocks"]["b"]["options"] = [{"text": "Loop", "nextBlockId": "missing"}]
        with pytest.raises(FunnelValidationError) as exc_info:
            FunnelGraph.from_flow(flow)
        assert "missing" in exc_info.value.message

    def test_stage_references_unknown_block(self):
        flow = minimal_flow(stages=[{"name": "WELCOME", "blockIds": ["a", "ghost"]}])
        with pytest.raises(FunnelValidationError):
            FunnelGraph.from_flow(flow)

    def test_block_in_two_stages(self):
        flow = minimal_flow(
            stages=[
                {"name": "WELCOME", "blockIds": ["a"]},
                {"name": "VALUE_DELIVERY", "blockIds": ["a", "b"]},
            ]
        )
        with pytest.raises(FunnelValidationError):
            FunnelGraph.from_flow(flow)

    def test_duplicate_block_in_stage(self):
        flow = minimal_flow(stages=[{"name": "WELCOME", "blockIds": ["a", "a"]}])
        with pytest.raises(FunnelValidationError):
            FunnelGraph.from_flow(flow)

    def test_non_object_flow(self):
        with pytest.raises(FunnelValidationError):
            FunnelGraph.from_flow(None)

    def test_missing_start_block_key(self):
        with pytest.raises(ValidationError):
            FunnelGraph.from_flow({"blocks": {}})

    def test_unstaged_blocks_are_allowed(self):
        graph = FunnelGraph.from_flow(minimal_flow())
        assert graph.stage_of("b") is None


class TestLookups:
    def test_stage_of(self, graph):
        assert graph.stage_of("pain_1").name == "PAIN_POINT_QUALIFICATION"
        assert graph.stage_of("nope") is None
        assert graph.stage_of(None) is None

    def test_stage_by_name(self, graph):
        assert graph.stage_by_name("OFFER").block_ids == ("offer_1",)
        assert graph.stage_by_name("MISSING") is None

    def test_block_in_stage(self, graph):
        assert graph.block_in_stage("offer_1", "OFFER") is True
        assert graph.block_in_stage("start", "OFFER") is False

    def test_get_block(self, graph):
        assert graph.get_block("start").message == "Welcome! What brings you here?"
        assert graph.get_block(None) is None
        assert graph.get_block("nope") is None
