"""Tests for caption normalization and transcript chunking (no external APIs required)."""

from __future__ import annotations

import logging

import pytest

from meeting_tasks.ingestion.chunking import split_into_chunks
from meeting_tasks.ingestion.parsers import (
    normalize_captions,
    normalize_plain_text,
    normalize_transcript,
    parse_captions,
)

SAMPLE_VTT = """WEBVTT

NOTE exported from Teams

1
00:00:01.000 --> 00:00:04.000
<v Sam Lee>I will fix the login timeout bug.</v>

2
00:00:04.500 --> 00:00:06.000
<v Sam Lee>Probably by tomorrow.</v>

3
00:00:06.500 --> 00:00:09.000
<v Jess>Sounds good, thanks.</v>
"""


# ---------------------------------------------------------------------------
# Caption parsing
# ---------------------------------------------------------------------------


class TestParseCaptions:
    def test_extracts_speakers_in_order(self) -> None:
        doc = parse_captions(SAMPLE_VTT)
        assert doc.speakers == ["Sam Lee", "Jess"]

    def test_merges_consecutive_cues_from_same_speaker(self) -> None:
        doc = parse_captions(SAMPLE_VTT)
        assert len(doc) == 2
        assert doc.segments[0].text == "I will fix the login timeout bug. Probably by tomorrow."

    def test_multiple_voice_tags_on_one_line(self) -> None:
        doc = parse_captions("<v Sam>Hello there. <v Jess>Hi Sam.")
        assert [(s.speaker, s.text) for s in doc.segments] == [
            ("Sam", "Hello there."),
            ("Jess", "Hi Sam."),
        ]

    def test_voice_tag_with_class(self) -> None:
        doc = parse_captions("<v.loud Sam>Ship it!</v>")
        assert doc.segments[0].speaker == "Sam"
        assert doc.segments[0].text == "Ship it!"

    def test_unlabelled_line_continues_current_speaker(self) -> None:
        doc = parse_captions("<v Sam>First part\nsecond part")
        assert len(doc) == 1
        assert doc.segments[0].text == "First part second part"

    def test_inline_markup_is_stripped(self) -> None:
        doc = parse_captions("<v Sam><b>Bold</b> and <i>italic</i> text")
        assert doc.segments[0].text == "Bold and italic text"

    def test_empty_input(self) -> None:
        assert len(parse_captions("")) == 0


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


class TestNormalizeCaptions:
    def test_single_line_scenario(self) -> None:
        text = normalize_captions(
            "<v Sam>I will fix the login timeout bug by tomorrow. <v Jess>Sounds good, thanks."
        )
        assert text == "Sam: I will fix the login timeout bug by tomorrow. Jess: Sounds good, thanks."

    def test_drops_header_timing_and_index_lines(self) -> None:
        text = normalize_captions(SAMPLE_VTT)
        assert "WEBVTT" not in text
        assert "-->" not in text
        assert "NOTE" not in text
        assert text.startswith("Sam Lee: I will fix")
        assert text.endswith("Jess: Sounds good, thanks.")

    def test_no_markup_or_runs_of_whitespace_remain(self) -> None:
        text = normalize_captions(SAMPLE_VTT)
        assert "<" not in text and ">" not in text
        assert "  " not in text
        assert "\n" not in text

    def test_idempotent(self) -> None:
        once = normalize_captions(SAMPLE_VTT)
        assert normalize_captions(once) == once

    def test_garbage_input_does_not_raise(self) -> None:
        garbage = "00:00 --> \n<v \n\x00\x01 <<>> </v>\n12345\nWEBVTT junk"
        text = normalize_captions(garbage)
        assert isinstance(text, str)
        assert "-->" not in text

    def test_text_without_voice_tags_is_kept(self) -> None:
        assert normalize_captions("just some words") == "just some words"

    def test_logs_segment_and_speaker_counts(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.DEBUG, logger="meeting_tasks.ingestion.parsers"):
            normalize_captions(SAMPLE_VTT)
        assert "Parsed 2 caption segments from 2 speakers" in caplog.text


class TestNormalizeTranscript:
    def test_dispatches_vtt(self) -> None:
        assert normalize_transcript("<v Sam>Hi", "vtt") == "Sam: Hi"

    @pytest.mark.parametrize("fmt", ["text", "plain_text", "txt"])
    def test_dispatches_plain_text(self, fmt: str) -> None:
        assert normalize_transcript("  a \n\n b  ", fmt) == "a b"

    def test_unknown_format_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown transcript format"):
            normalize_transcript("hello", "docx")

    def test_plain_text_handles_empty(self) -> None:
        assert normalize_plain_text("") == ""


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------


class TestSplitIntoChunks:
    def test_short_text_is_single_chunk(self) -> None:
        assert split_into_chunks("Short text.", max_length=100) == ["Short text."]

    def test_blank_text_yields_no_chunks(self) -> None:
        assert split_into_chunks("   ", max_length=100) == []

    def test_non_positive_limit_raises(self) -> None:
        with pytest.raises(ValueError):
            split_into_chunks("text", max_length=0)

    def test_chunks_respect_limit(self) -> None:
        text = " ".join(f"Sentence number {i} is here." for i in range(200))
        chunks = split_into_chunks(text, max_length=120)
        assert len(chunks) > 1
        assert all(len(chunk) <= 120 for chunk in chunks)

    def test_chunks_reconstruct_text(self) -> None:
        text = " ".join(f"Sentence number {i} is here!" for i in range(50))
        chunks = split_into_chunks(text, max_length=80)
        assert " ".join(chunks).split() == text.split()

    def test_splits_on_sentence_boundaries(self) -> None:
        text = "First sentence here. Second sentence here. Third sentence here."
        chunks = split_into_chunks(text, max_length=45)
        assert chunks == ["First sentence here. Second sentence here.", "Third sentence here."]

    def test_long_sentence_falls_back_to_words(self) -> None:
        text = "word " * 50
        chunks = split_into_chunks(text.strip(), max_length=24)
        assert all(len(chunk) <= 24 for chunk in chunks)
        assert " ".join(chunks).split() == text.split()

    def test_oversized_word_is_its_own_chunk(self) -> None:
        long_word = "x" * 30
        chunks = split_into_chunks(f"tiny {long_word} end", max_length=10)
        assert long_word in chunks
        assert " ".join(chunks).split() == ["tiny", long_word, "end"]
