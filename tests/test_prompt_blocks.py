from __future__ import annotations

from clarus.pipeline.languages import is_valid_language, language_directive
from clarus.pipeline.metadata import (
    build_metadata_block,
    build_type_instructions,
    count_speakers,
    format_count,
    format_duration,
)
from clarus.pipeline.preferences import AnalysisPreferences, build_preference_block


def test_youtube_metadata_block():
    block = build_metadata_block(
        {
            "type": "youtube",
            "title": "Rates explained",
            "author": "Macro Channel",
            "duration": 2400,
            "view_count": 120_000,
            "like_count": 7_200,
        }
    )
    assert block.startswith("## Content Metadata")
    assert "- Channel: Macro Channel" in block
    assert "- Duration: 40m (long-form)" in block
    assert "- Views: 120K | Likes: 7.2K (high engagement)" in block


def test_metadata_block_empty_when_only_type_known():
    assert build_metadata_block({"type": "x_post"}) != ""
    assert build_metadata_block({"type": "podcast"}) == ""


def test_podcast_metadata_counts_speakers():
    text = "Speaker A: hi\n\nSpeaker B: hello\n\nSpeaker A: welcome"
    assert count_speakers(text) == 2
    block = build_metadata_block({"type": "podcast", "duration": 3700, "full_text": text})
    assert "- Duration: 1h 1m" in block
    assert "- Speakers: 2 (interview/dialogue)" in block


def test_type_instructions_extras():
    youtube = build_type_instructions("youtube", duration=45)
    assert "short-form video" in youtube
    assert build_type_instructions("document") == build_type_instructions("pdf")
    assert "quality of questions" in build_type_instructions("podcast", speaker_count=2)
    assert build_type_instructions("unknown") == ""


def test_format_helpers():
    assert format_duration(45) == "45s"
    assert format_duration(7200) == "2h"
    assert format_count(3_200_000) == "3.2M"
    assert format_count(2_000) == "2K"


def test_preference_block_empty_for_defaults_and_inactive():
    assert build_preference_block(None) == ""
    assert build_preference_block(AnalysisPreferences()) == ""
    assert build_preference_block(AnalysisPreferences(analysis_mode="learn", is_active=False)) == ""


def test_preference_block_renders_labels():
    prefs = AnalysisPreferences.from_row(
        {"analysis_mode": "evaluate", "expertise_level": "expert", "focus_areas": ["bias"], "is_active": True}
    )
    block = build_preference_block(prefs)
    assert "Analysis mode: EVALUATE" in block
    assert "Expertise: EXPERT" in block
    assert "Priorities: BIAS" in block


def test_language_directives():
    assert language_directive("en") == "Write your analysis in English."
    assert "Japanese (日本語)" in language_directive("ja")
    assert is_valid_language("nl")
    assert not is_valid_language("xx")
