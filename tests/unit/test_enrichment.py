"""Tests for deterministic game enrichment."""

from __future__ import annotations

from bookquest.models.content import Condition, Effect, Interaction
from bookquest.pipeline.stages.enrichment import (
    enrich_game_data,
    find_hubs,
    inject_missing_patterns,
    inject_navigation_loops,
    pad_minimum_interactions,
)
from bookquest.validation.validator import collect_coverage
from tests.fixtures.story_data import make_game, story_node


def _ids(node) -> list[str]:
    return [i.id for i in node.interactions]


class TestFindHubs:
    def test_checkpoints(self) -> None:
        game = make_game(
            [
                story_node("start", ["a"]),
                story_node("a", ["b"], node_type="checkpoint"),
                story_node("b", ["end"]),
                story_node("end", node_type="ending"),
            ]
        )
        assert find_hubs(game) == ["a"]

    def test_three_distinct_predecessors(self) -> None:
        game = make_game(
            [
                story_node("x", ["m", "y"]),
                story_node("y", ["m", "z"]),
                story_node("z", ["m"]),
                story_node("m"),
            ]
        )
        assert find_hubs(game) == ["m"]

    def test_endings_never_hubs(self) -> None:
        game = make_game(
            [
                story_node("x", ["end", "y"]),
                story_node("y", ["end", "z"]),
                story_node("z", ["end"]),
                story_node("end", node_type="ending"),
            ]
        )
        assert find_hubs(game) == ["x"]

    def test_falls_back_to_start(self) -> None:
        game = make_game([story_node("a", ["b"]), story_node("b")], start="a")
        assert find_hubs(game) == ["a"]


class TestNavigationLoops:
    def _chain(self):
        return make_game(
            [
                story_node("hub", ["a"], node_type="checkpoint"),
                story_node("a", ["b"]),
                story_node("b", ["end"], location="stairs"),
                story_node("end", node_type="ending"),
            ]
        )

    def test_adds_return_links(self) -> None:
        game = self._chain()

        assert inject_navigation_loops(game) == 2

        link = game.nodes["a"].interactions[-1]
        assert link.id == "go_back_hub_from_a"
        assert link.type == "go"
        assert link.target_node_id == "hub"
        assert link.button_text == "Return to The Dock"
        assert link.result_text == "You make your way back to the dock."
        assert link.effects == [Effect(type="set_location", key="dock")]
        assert _ids(game.nodes["b"])[-1] == "go_back_hub_from_b"
        assert _ids(game.nodes["hub"]) == ["go_a"]
        assert _ids(game.nodes["end"]) == []

    def test_existing_go_to_hub_kept(self) -> None:
        game = self._chain()
        game.nodes["a"].interactions.append(
            Interaction(id="back", type="go", button_text="Back", target_node_id="hub")
        )

        assert inject_navigation_loops(game) == 1
        assert _ids(game.nodes["a"]) == ["go_b", "back"]

    def test_unreachable_nodes_skipped(self) -> None:
        game = self._chain()
        game.nodes["island"] = story_node("island")

        inject_navigation_loops(game)

        assert _ids(game.nodes["island"]) == []

    def test_prefers_hub_at_same_location(self) -> None:
        game = make_game(
            [
                story_node("h1", ["h2"], node_type="checkpoint"),
                story_node("h2", ["n"], node_type="checkpoint", location="stairs"),
                story_node("n", location="stairs"),
            ]
        )

        inject_navigation_loops(game)

        assert game.nodes["n"].interactions[-1].target_node_id == "h2"
        assert game.nodes["h2"].interactions[-1].target_node_id == "h1"

    def test_idempotent(self) -> None:
        game = self._chain()
        inject_navigation_loops(game)

        assert inject_navigation_loops(game) == 0


class TestMissingPatterns:
    def _game(self):
        nodes = [story_node(f"n{i}", [f"n{i + 1}"]) for i in range(8)]
        nodes.append(story_node("n8", node_type="ending"))
        nodes[1].present_characters = ["ferryman"]
        nodes[2].available_objects = ["lamp"]
        return make_game(nodes)

    def test_injects_one_per_missing_kind(self) -> None:
        game = self._game()

        assert inject_missing_patterns(game, collect_coverage(game.nodes)) == 11

        nodes = game.nodes
        assert "enrich_give_brass_key_to_ferryman" in _ids(nodes["n1"])
        assert "enrich_befriend_ferryman" in _ids(nodes["n1"])
        assert _ids(nodes["n2"])[1:] == ["enrich_use_on_brass_key_lamp", "enrich_examine_lamp_state"]
        assert "enrich_ask_ferryman_about_past" in _ids(nodes["n3"])
        assert "enrich_wonder_not_visited_n6" in _ids(nodes["n3"])
        assert "enrich_check_var_eq_courage" in _ids(nodes["n4"])
        assert "enrich_reflect_visited_n1" in _ids(nodes["n5"])
        assert "enrich_talk_trusted_ferryman" in _ids(nodes["n6"])
        assert "enrich_clear_flag_reset" in _ids(nodes["n6"])
        assert "enrich_set_variable_courage" in _ids(nodes["n7"])
        assert _ids(nodes["n8"]) == []

    def test_pattern_shapes(self) -> None:
        game = self._game()
        inject_missing_patterns(game, collect_coverage(game.nodes))

        use_on = game.nodes["n2"].interactions[1]
        assert use_on.requires_item == "brass_key"
        assert use_on.target_object == "lamp"
        assert use_on.conditions == [Condition(type="has_item", key="brass_key")]
        assert use_on.effects == [Effect(type="set_object_state", key="lamp", value="lit")]

        inspect = game.nodes["n2"].interactions[2]
        assert inspect.conditions == [Condition(type="object_state", key="lamp", value="dark")]

        give = next(i for i in game.nodes["n1"].interactions if i.type == "give")
        assert [e.type for e in give.effects] == ["remove_item", "change_relation", "set_flag"]
        assert give.effects[1].delta == 15

        reset = next(i for i in game.nodes["n6"].interactions if i.id == "enrich_clear_flag_reset")
        assert reset.effects == [Effect(type="clear_flag", key="visited_n6")]

    def test_new_coverage_fills_every_patterned_kind(self) -> None:
        game = self._game()
        inject_missing_patterns(game, collect_coverage(game.nodes))

        assert inject_missing_patterns(game, collect_coverage(game.nodes)) == 0

    def test_stale_coverage_does_not_duplicate(self) -> None:
        game = self._game()
        coverage = collect_coverage(game.nodes)
        inject_missing_patterns(game, coverage)

        assert inject_missing_patterns(game, coverage) == 0

    def test_present_kinds_skipped(self) -> None:
        game = self._game()
        game.nodes["n0"].interactions.append(Interaction(id="offer", type="give", target_object="ferryman"))

        inject_missing_patterns(game, collect_coverage(game.nodes))

        assert not any(i.id.startswith("enrich_give") for n in game.nodes.values() for i in n.interactions)

    def test_empty_registries_limit_patterns(self) -> None:
        game = make_game([story_node("a", ["b"]), story_node("b", ["c"]), story_node("c")])
        game.items, game.characters, game.objects, game.variable_definitions = {}, {}, {}, {}

        # Only the flag reset needs no entities; visited patterns need more than five nodes
        assert inject_missing_patterns(game, collect_coverage(game.nodes)) == 1

    def test_only_endings(self) -> None:
        game = make_game([story_node("end", node_type="ending")])
        assert inject_missing_patterns(game, collect_coverage(game.nodes)) == 0


class TestPadding:
    def test_adds_examine_and_talk(self) -> None:
        game = make_game([story_node("a", ["b"]), story_node("b", node_type="ending")])
        game.nodes["a"].present_characters = ["ferryman"]

        assert pad_minimum_interactions(game) == 2

        examine, talk = game.nodes["a"].interactions[1:]
        assert examine.id == "pad_examine_a"
        assert examine.button_text == "Look around The Dock"
        assert talk.id == "pad_talk_ferryman_a"
        assert talk.button_text == "Speak with The Ferryman"
        assert talk.target_object == "ferryman"
        assert _ids(game.nodes["b"]) == []

    def test_existing_examine_not_duplicated(self) -> None:
        game = make_game([story_node("a", ["b"]), story_node("b", node_type="ending")])
        game.nodes["a"].interactions.append(Interaction(id="look", type="examine"))

        assert pad_minimum_interactions(game) == 0

    def test_unknown_location_and_character(self) -> None:
        game = make_game([story_node("a", location="void")])
        game.nodes["a"].present_characters = ["stranger"]

        assert pad_minimum_interactions(game) == 1
        assert game.nodes["a"].interactions[0].button_text == "Look around the area"

    def test_full_nodes_untouched(self) -> None:
        game = make_game([story_node("a", ["b", "c", "d", "e"])])
        assert pad_minimum_interactions(game) == 0


def test_enrich_game_data_report() -> None:
    game = make_game(
        [
            story_node("hub", ["a"], node_type="checkpoint"),
            story_node("a", ["end"]),
            story_node("end", node_type="ending"),
        ]
    )

    report = enrich_game_data(game)

    assert report.loops_added == 1
    assert report.patterns_injected == 9
    assert report.interactions_padded == 0
    assert report.nodes_with_few_interactions == []
    assert report.coverage is not None
    assert report.coverage.interaction_type_counts["give"] == 1
    assert len(game.nodes["hub"].interactions) == 4
