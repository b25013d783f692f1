"""Tests for prompt assembly."""

import pytest

from dialogforge import prompts
from dialogforge.config import Settings
from dialogforge.context import (
    ContextAssembler,
    analyze_character_evolution,
    analyze_conversation_pattern,
    analyze_emotional_arc,
    extract_important_words,
    extract_thematic_elements,
)
from dialogforge.protocols import ConfigurationError
from dialogforge.tags import TagRegistry, TagResolver
from dialogforge.types import GenerateContext, ProjectType, Tag

from tests.fakes import node


@pytest.fixture
def assembler(settings):
    return ContextAssembler(settings)


def messages(*texts, type="npcDialog"):
    return [node(f"m{i}", type, text) for i, text in enumerate(texts)]


# =============================================================================
# System prompt resolution
# =============================================================================


class TestSystemPrompt:
    """Override, project node, project general, node, general."""

    def test_override_wins(self, assembler):
        assert assembler.system_prompt_for("npcDialog", override="Be terse.") == "Be terse."

    def test_project_node_template(self, assembler):
        assert assembler.system_prompt_for("enemyDialog", ProjectType.GAME) == prompts.GAME_PROMPTS["enemyDialog"]

    def test_falls_back_to_project_general(self, assembler):
        assert assembler.system_prompt_for("narratorNode", ProjectType.GAME) == prompts.GAME_PROMPTS["general"]

    def test_falls_back_to_top_level_templates(self, settings):
        no_projects = ContextAssembler(settings.merged(system_prompts={"project_types": {}}))

        assert no_projects.system_prompt_for("npcDialog") == prompts.GENERAL_PROMPTS["npcDialog"]
        assert no_projects.system_prompt_for("narratorNode") == prompts.GENERAL_PROMPTS["general"]

    def test_missing_templates_raise_configuration_error(self, settings):
        empty = ContextAssembler(settings.merged(system_prompts={"node_types": {}, "project_types": {}}))

        with pytest.raises(ConfigurationError):
            empty.system_prompt_for("npcDialog")

    def test_custom_node_without_template_is_empty(self, settings):
        empty = ContextAssembler(settings.merged(system_prompts={"node_types": {}, "project_types": {}}))
        assert empty.system_prompt_for("customNode") == ""


# =============================================================================
# Context classification
# =============================================================================


class TestContextAnalysis:
    def test_isolated_node_uses_isolated_template(self, assembler):
        ctx = GenerateContext(current=node("n1"), character_info="TOPIC: A lost artifact")

        prompt = assembler.build_prompt("npcDialog", ctx)

        assert assembler.templates.isolated_node in prompt
        assert "THIS IS A STANDALONE NODE WITH NO CONNECTIONS." in prompt
        assert "TOPIC: A lost artifact" in prompt
        assert "NEXT POSSIBLE RESPONSES" not in prompt
        assert prompt.endswith("RESPONSE:")

    def test_ignore_connections_forces_isolation(self, assembler):
        ctx = GenerateContext(
            current=node("n2"),
            previous=messages("Who goes there?"),
            ignore_connections=True,
        )

        prompt = assembler.build_prompt("npcDialog", ctx)

        assert "THIS IS A STANDALONE NODE" in prompt
        assert "Who goes there?" not in prompt

    def test_dialog_start_lists_next_responses(self, assembler):
        ctx = GenerateContext(current=node("n1"), next=messages("Tell me more.", type="playerResponse"))

        prompt = assembler.build_prompt("npcDialog", ctx)

        assert f"DIALOG START - {assembler.templates.dialog_start}" in prompt
        assert "→ Tell me more." in prompt
        assert "PREVIOUS MESSAGES" not in prompt

    def test_continuation_uses_wide_window_for_long_conversations(self, assembler):
        previous = messages(*[f"line {i}" for i in range(10)], type="playerResponse")
        ctx = GenerateContext(current=node("n11"), previous=previous)

        prompt = assembler.build_prompt("npcDialog", ctx)

        assert "[PLAYERRESPONSE]: line 3" in prompt
        assert "line 2" not in prompt
        assert "LAST MESSAGE: line 9" in prompt
        assert "[Open ended response]" in prompt
        assert "=== CONVERSATION DYNAMICS ===" in prompt

    def test_continuation_uses_narrow_window_for_short_conversations(self, assembler):
        previous = messages(*[f"line {i}" for i in range(6)], type="playerResponse")
        ctx = GenerateContext(current=node("n7"), previous=previous)

        prompt = assembler.build_prompt("npcDialog", ctx)

        assert "line 0" not in prompt
        assert "[PLAYERRESPONSE]: line 1" in prompt

    def test_sibling_block_only_without_dialog_chain(self, assembler):
        ctx = GenerateContext(current=node("n2"), sibling_nodes=messages("Yes, I will help you."))

        prompt = assembler.build_prompt("playerResponse", ctx)

        assert "SIMILAR NODE AWARENESS" in prompt
        assert '- "Yes, I will help you."' in prompt


# =============================================================================
# Tags
# =============================================================================


class TestTagDepth:
    """Tag content shrinks as the conversation gets deeper."""

    def test_full_content_at_shallow_depth(self, assembler, location_tag):
        block = assembler.adjust_tags_by_depth([location_tag], 1, "playerResponse")
        assert "=== BACKGROUND CONTEXT ===" in block
        assert "• Old Mill: A crumbling mill by the river" in block

    def test_labels_only_at_medium_depth(self, assembler, location_tag):
        block = assembler.adjust_tags_by_depth([location_tag], 3, "npcDialog")
        assert "• Old Mill\n" in block
        assert "crumbling" not in block

    def test_omitted_when_deep(self, assembler, location_tag):
        assert assembler.adjust_tags_by_depth([location_tag], 3, "playerResponse") == ""
        assert assembler.adjust_tags_by_depth([], 0, "npcDialog") == ""


class TestPrioritizedContext:
    def test_quest_character_and_location_sections(self, assembler, quest_tag, character_tag, location_tag):
        block = assembler.build_prioritized_context([quest_tag, character_tag, location_tag], has_previous=False)

        assert "=== [CRITICAL PRIORITY] CURRENT QUEST/OBJECTIVE ===" in block
        assert "ACTIVE QUEST: Recover the Moonstone" in block
        assert "HIGH IMPORTANCE" in block
        assert "CHARACTER: Mira" in block
        assert "Trust Level: 2/10" in block
        assert 'Use phrases like "Listen here"' in block
        assert "LOCATION: Old Mill - A crumbling mill by the river" in block

    def test_regular_quest_is_not_flagged(self, assembler):
        quest = Tag(id="q", label="Deliver bread", type="quest", content="Bring bread", importance=4)
        assert "HIGH IMPORTANCE" not in assembler.build_prioritized_context([quest], has_previous=False)

    def test_emotional_context_needs_previous_messages(self, assembler):
        mood = Tag(id="mood", label="Grief", type="mood", content="Mourning a brother")

        assert "EMOTIONAL CONTEXT" not in assembler.build_prioritized_context([mood], has_previous=False)
        assert "EMOTIONAL CONTEXT" in assembler.build_prioritized_context([mood], has_previous=True)

    def test_tags_resolved_from_registry(self, settings, quest_tag):
        assembler = ContextAssembler(settings, TagResolver(TagRegistry([quest_tag])))
        ctx = GenerateContext(current=node("n1", tags=["quest-1", "unknown"]))

        prompt = assembler.build_prompt("npcDialog", ctx)

        assert "ACTIVE QUEST: Recover the Moonstone" in prompt
        assert "Directly address the current quest/objective Recover the Moonstone" in prompt


class TestTagRequirements:
    def test_checklist_orders_quest_location_character_first(self, assembler, quest_tag, character_tag, location_tag):
        block = assembler.build_tag_requirements([character_tag, location_tag, quest_tag])
        lines = block.split("\n- ")

        assert lines[3].startswith("Directly address the current quest/objective")
        assert lines[4].startswith("Ground the line in the current location/environment Old Mill")
        assert lines[5].startswith("Stay in Mira's voice")
        assert "Use at least 2 distinct tag detail(s)" in block

    def test_no_tags_no_requirements(self, assembler):
        assert assembler.build_tag_requirements([]) == ""


class TestNodeTypeRules:
    def test_game_player_response_rules(self, assembler):
        rules = assembler.build_node_type_rules("playerResponse", GenerateContext())
        assert "PLAYER VARIETY REQUIREMENTS" in rules
        assert '"According to the records"' in rules

    def test_game_enemy_rules(self, assembler):
        assert "NPC/ENEMY VOICE SAFEGUARDS" in assembler.build_node_type_rules("enemyDialog", GenerateContext())

    def test_other_projects_have_no_rules(self, assembler):
        ctx = GenerateContext(project_type=ProjectType.NOVEL)
        assert assembler.build_node_type_rules("playerResponse", ctx) == ""


# =============================================================================
# Diversity and secondary prompts
# =============================================================================


class TestDiversityPrompts:
    def test_diversity_block_numbers_related_and_lists_openers(self, assembler):
        block = assembler.build_diversity_block(["Yes, I will help you.", "Yes indeed.", "Never."])

        assert '1. "Yes, I will help you."' in block
        assert '3. "Never."' in block
        assert "exact opening words: yes,, yes, never." in block

    def test_missing_diversity_template_is_configuration_error(self, settings):
        assembler = ContextAssembler(settings.merged(system_prompts={"diversity": None}))

        with pytest.raises(ConfigurationError):
            assembler.build_diversity_block(["Yes."])

    def test_forced_differentiation(self, assembler):
        prompt = assembler.build_forced_differentiation_prompt("BASE", ["Yes, I will help you."])

        assert prompt.startswith("\nBASE\n")
        assert "CRITICAL: Your previous response was too similar to existing ones!" in prompt
        assert prompt.endswith("GENERATE A FRESH, UNIQUE RESPONSE WITH DIFFERENT TONE AND STRUCTURE:")


class TestSecondaryPrompts:
    def test_improve_prompt(self, assembler):
        ctx = GenerateContext(current=node("n2", text="Hi."), previous=messages("Who are you?"))

        prompt = assembler.build_improve_prompt("npcDialog", ctx, "Hi.")

        assert 'CURRENT NODE (NPCDIALOG): "Hi."' in prompt
        assert "[NPCDIALOG]: Who are you?" in prompt
        assert "No next messages" in prompt
        assert prompt.endswith(assembler.templates.improvement)

    def test_custom_prompt_for_generic_node(self, settings):
        assembler = ContextAssembler(settings.merged(system_prompts={"node_types": {}, "project_types": {}}))
        ctx = GenerateContext(current=node("c1", "customNode"), previous=messages("a", "b", "c"))

        prompt = assembler.build_custom_prompt("customNode", ctx, "Describe the storm.")

        assert "CONTEXT INFORMATION:" in prompt
        assert "PREVIOUS CONTEXT:\nb\nc" in prompt
        assert "Describe the storm." in prompt
        assert prompts.FALLBACK_SYSTEM_PROMPT not in prompt

    def test_custom_prompt_falls_back_to_default_system_prompt(self, settings):
        assembler = ContextAssembler(settings.merged(system_prompts={"node_types": {}, "project_types": {}}))
        ctx = GenerateContext(current=node("n1"))

        prompt = assembler.build_custom_prompt("npcDialog", ctx, "Be rude.")

        assert prompts.FALLBACK_SYSTEM_PROMPT in prompt
        assert "CURRENT CONVERSATION STATE:" in prompt

    def test_fix_prompts(self, assembler):
        deadend = assembler.build_fix_prompt("deadend", current_text="Goodbye.")
        assert 'The player has said: "Goodbye."' in deadend

        gap = assembler.build_fix_prompt(
            "contextGap", message="Ignores the bridge", current_text="Nice day.", previous_text="The bridge fell!"
        )
        assert 'Fix this context gap: "Ignores the bridge"' in gap
        assert 'Previous statement: "The bridge fell!"' in gap

        general = assembler.build_fix_prompt("somethingElse", message="Odd", current_text="x")
        assert general.startswith('Fix this issue: "Odd"')

    def test_non_fluent_inconsistency_gets_rewrite_prompt(self, assembler):
        prompt = assembler.build_fix_prompt(
            "inconsistency", message="Non-fluent text detected", current_text="Me go now.", previous_text="Stay."
        )

        assert prompt.startswith("Rewrite the following text to be more natural")
        assert 'Current text: "Me go now."' in prompt
        assert 'Previous context: "Stay."' in prompt


# =============================================================================
# Narrative analysis
# =============================================================================


class TestNarrativeAnalysis:
    def test_emotional_arc_building(self):
        arc = analyze_emotional_arc(messages("The road is long.", "I am glad we met.", "I am happy and hopeful."))

        assert arc.trend == "building"
        assert arc.intensity == 3
        assert arc.markers == ["glad", "happy", "hopeful"]

    def test_emotional_arc_empty(self):
        assert analyze_emotional_arc([]).trend == "neutral"

    def test_character_evolution(self):
        evolution = analyze_character_evolution(
            messages("Hello there.", "I realize it now.", "I understand, it makes sense.")
        )

        assert evolution.has_growth
        assert evolution.growth_type == "realization"

    def test_conversation_pattern_questions(self):
        pattern = analyze_conversation_pattern(messages("Why?", "Who?", "Where?"))

        assert pattern.type.startswith("question-heavy")
        assert pattern.suggestion == "Provide a definitive answer to break the questioning cycle"

    def test_thematic_elements(self):
        theme = Tag(id="t", label="Lost kin", type="theme")

        themes = extract_thematic_elements([theme], messages("You betray us all."))

        assert themes == ["Lost kin", "betrayal"]

    def test_important_words(self):
        words = extract_important_words(messages("Where is Captain Vale? The key is lost."))

        assert "Vale" in words
        assert "key" in words
