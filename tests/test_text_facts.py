"""
Tests for text helpers, atomic facts and explicit triggers.
"""

import pytest

from memory_intelligence.memory.facts import (
    extract_atomic_facts,
    is_redundant,
    join_statements,
    merge_content,
    merge_fact_statements,
    split_statements,
)
from memory_intelligence.memory.text import (
    content_terms,
    extract_keywords,
    jaccard,
    normalize_whitespace,
    stem,
    truncate,
)
from memory_intelligence.memory.triggers import EXPLICIT_CONFIDENCE, detect_explicit_trigger


class TestText:
    """Test text helpers."""

    def test_normalize_whitespace(self):
        assert normalize_whitespace("  I  like \n\t tea  ") == "I like tea"
        assert normalize_whitespace(None) == ""

    def test_truncate_short_text_unchanged(self):
        assert truncate("short", 10) == "short"

    def test_truncate_prefers_word_boundary(self):
        """Test that truncation backs up to a nearby space."""
        assert truncate("abcdefghij klm", 12) == "abcdefghij"

    def test_truncate_hard_cut(self):
        """Test that a distant space is not used."""
        assert truncate("hello world foo", 11) == "hello world"

    def test_stem(self):
        """Test the suffix stripper."""
        assert stem("workouts") == "workout"
        assert stem("allergies") == "allergy"
        assert stem("is") == "is"

    def test_content_terms_drop_stopwords(self):
        """Test stopword removal and stemming."""
        assert content_terms("I really prefer the workouts") == {"prefer", "workout"}

    def test_extract_keywords_by_frequency(self):
        """Test keyword ordering by count then first appearance."""
        keywords = extract_keywords("I love hiking and hiking trails near mountains", 3)
        assert keywords == ["hiking", "love", "trails"]

    def test_jaccard(self):
        assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)
        assert jaccard(set(), set()) == 1.0
        assert jaccard({"a"}, set()) == 0.0


class TestAtomicFacts:
    """Test fact splitting and merging."""

    def test_split_statements(self):
        """Test splitting on sentence boundaries only."""
        statements = split_statements("I like tea. I hate coffee, but I love cocoa!\nWalks; naps")
        assert statements == ["I like tea.", "I hate coffee, but I love cocoa!", "Walks", "naps"]

    def test_extract_atomic_facts(self):
        """Test that facts are owned by the memory."""
        facts = extract_atomic_facts("mem_1", "A cat sat down. A dog ran off.")

        assert [f.statement for f in facts] == ["A cat sat down.", "A dog ran off."]
        assert all(f.memory_id == "mem_1" for f in facts)
        assert len({f.id for f in facts}) == 2

    def test_is_redundant_subset(self):
        """Test that a statement covered by an existing one is redundant."""
        assert is_redundant("I prefer morning workouts", ["I prefer morning workouts every day"])

    def test_is_redundant_new_information(self):
        assert not is_redundant("I am allergic to peanuts", ["I prefer morning workouts"])

    def test_merge_fact_statements_keeps_order(self):
        merged = merge_fact_statements(["I like tea"], ["I like tea", "I own a cat"])
        assert merged == ["I like tea", "I own a cat"]

    def test_merge_content_nothing_new(self):
        """Test that existing content is returned untouched when nothing is added."""
        existing = "I prefer morning workouts."
        assert merge_content(existing, "I prefer morning workouts") is existing

    def test_merge_content_union(self):
        """Test that new statements are appended as sentences."""
        merged = merge_content("I prefer tea.", "I am allergic to peanuts")
        assert merged == "I prefer tea. I am allergic to peanuts."

    def test_merge_content_keeps_qualifying_clause(self):
        """Test that a "but" clause stays attached to the statement it qualifies."""
        merged = merge_content("I like running but not in the rain", "I also go cycling every weekend with friends")

        assert merged == "I like running but not in the rain. I also go cycling every weekend with friends."

    def test_join_statements_respects_limit(self):
        """Test that trailing statements beyond the limit are dropped."""
        assert join_statements(["aaaa", "bbbb"], max_chars=6) == "aaaa."


class TestExplicitTriggers:
    """Test explicit "remember this" detection."""

    def test_remember_that(self):
        trigger = detect_explicit_trigger("Remember that I prefer morning workouts")

        assert trigger is not None
        assert trigger.content == "I prefer morning workouts"
        assert trigger.confidence == EXPLICIT_CONFIDENCE
        assert trigger.type == "explicit_save"

    def test_dont_forget_with_please(self):
        trigger = detect_explicit_trigger("Please don't forget my wife's birthday is May 3.")
        assert trigger.content == "my wife's birthday is May 3"

    def test_trigger_in_later_sentence(self):
        trigger = detect_explicit_trigger("I went shopping today. Remember that I'm vegan.")
        assert trigger.content == "I'm vegan"

    def test_no_trigger_mid_sentence(self):
        """Test that 'remember' inside a sentence is not a save request."""
        assert detect_explicit_trigger("I don't remember the name of that film") is None

    def test_empty_message(self):
        assert detect_explicit_trigger("") is None
