# tests/test_similarity.py
from processing.boundary_validator import MATCH_VOCABULARY, TRANSITION_VOCABULARY
from utils.similarity import keyword_tokens, overlap_ratio, shingles, token_coverage


def test_keyword_tokens_keeps_vocabulary_words_whole():
    assert keyword_tokens("进入废土城", TRANSITION_VOCABULARY) == ["进入", "废土", "城"]


def test_keyword_tokens_chunks_without_vocabulary():
    assert keyword_tokens("进入废土城") == ["进入", "废土", "城"]
    assert keyword_tokens("主角击败魔王", MATCH_VOCABULARY) == ["主角", "击败", "魔王"]


def test_keyword_tokens_latin_words_lowercased_without_stopwords():
    assert keyword_tokens("The hero ENTERS the Wasteland City") == [
        "hero",
        "enters",
        "wasteland",
        "city",
    ]


def test_keyword_tokens_deduplicates():
    assert keyword_tokens("城城，城城") == ["城城"]


def test_token_coverage():
    assert token_coverage(["进入", "废土", "城"], "他进入了废土城") == 1.0
    assert token_coverage(["进入", "废土", "城"], "他进入了森林") == 1 / 3
    assert token_coverage([], "anything") == 0.0


def test_shingles_and_overlap_ratio():
    assert shingles("废土城") == {"废土", "土城"}
    assert overlap_ratio("主角进入废土城", "主角进入废土城") == 1.0
    assert overlap_ratio("", "主角") == 0.0
    assert 0.0 < overlap_ratio("主角进入废土城", "主角离开森林") < 0.5
