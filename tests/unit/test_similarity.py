"""Unit tests for string similarity and hashing primitives."""

import hashlib

import pytest

from enterprise_migration.services.similarity import (
    edit_distance,
    hash_value,
    name_similarity,
    normalize_phone,
    phonetic_code,
    trigram_overlap,
    trigrams,
)


class TestEditDistance:
    """Test Levenshtein distance."""

    def test_kitten_sitting(self):
        assert edit_distance("kitten", "sitting") == 3

    def test_identical_strings(self):
        assert edit_distance("smith", "smith") == 0

    def test_empty_string_costs_length(self):
        assert edit_distance("", "abc") == 3
        assert edit_distance("abc", "") == 3

    def test_symmetric(self):
        assert edit_distance("flaw", "lawn") == edit_distance("lawn", "flaw") == 2


class TestPhoneticCode:
    """Test the Soundex-style phonetic code."""

    def test_robert_and_rupert_share_code(self):
        assert phonetic_code("Robert") == phonetic_code("Rupert") == "R163"

    def test_short_names_are_zero_padded(self):
        assert phonetic_code("Lee") == "L000"

    def test_adjacent_same_class_letters_collapse(self):
        assert phonetic_code("Pfister") == "P236"

    def test_case_and_punctuation_ignored(self):
        assert phonetic_code("o'brien") == phonetic_code("OBrien")

    def test_empty(self):
        assert phonetic_code("") == ""
        assert phonetic_code("123") == ""


class TestTrigrams:
    """Test trigram sets and overlap."""

    def test_padded_trigrams(self):
        assert trigrams("ab") == {"  a", " ab", "ab "}

    def test_identical_overlap_is_one(self):
        assert trigram_overlap("smith", "smith") == 1.0

    def test_disjoint_overlap_is_zero(self):
        assert trigram_overlap("abc", "xyz") == 0.0


class TestNameSimilarity:
    """Test the composite name similarity."""

    @pytest.mark.parametrize("name", ["Maria Lopez", "x", "O'Neil"])
    def test_identical_names_score_one(self, name):
        assert name_similarity(name, name) == 1.0

    def test_case_and_whitespace_insensitive(self):
        assert name_similarity("  MARIA ", "maria") == 1.0

    def test_empty_scores_zero(self):
        assert name_similarity("", "anything") == 0.0
        assert name_similarity("anything", None) == 0.0

    def test_close_names_score_higher_than_distant(self):
        close = name_similarity("John Smith", "Jon Smith")
        far = name_similarity("John Smith", "Alice Walker")
        assert close > far
        assert 0.0 <= far <= 1.0
        assert close <= 1.0


class TestHashing:
    """Test value hashing and phone normalization."""

    def test_hash_is_sha256_of_string_form(self):
        assert hash_value(42) == hashlib.sha256(b"42").hexdigest()

    def test_none_hashes_like_empty_string(self):
        assert hash_value(None) == hash_value("")

    def test_normalize_phone(self):
        assert normalize_phone("(555) 123-4567") == "5551234567"
        assert normalize_phone(None) == ""
