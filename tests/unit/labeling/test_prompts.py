"""
Unit tests for grading prompts and calibration images.
"""

import base64

from makergrade.labeling.prompts import (
    GRADE_RUBRIC,
    ReferenceImage,
    build_user_content,
    get_system_prompt,
    load_reference_images,
)


class TestSystemPrompt:
    def test_contains_every_grade(self):
        prompt = get_system_prompt()

        for grade in GRADE_RUBRIC:
            assert f"{grade}: " in prompt
        assert '"grade": "S|A|B|C|D"' in prompt

    def test_reference_note_only_with_references(self):
        assert "reference examples" not in get_system_prompt(False)
        assert "reference examples" in get_system_prompt(True)


class TestReferenceImages:
    def test_loads_one_image_per_grade(self, tmp_path):
        (tmp_path / "slevel1.png").write_bytes(b"\x89PNG-s")
        (tmp_path / "Alevel2.JPG").write_bytes(b"jpeg-a")
        (tmp_path / "clevel.webp").write_bytes(b"webp-c")
        (tmp_path / "blevel.txt").write_text("not an image")

        refs = load_reference_images(tmp_path)

        assert [r.grade for r in refs] == ["S", "A", "C"]
        assert refs[0].data_url == "data:image/png;base64," + base64.b64encode(
            b"\x89PNG-s"
        ).decode()
        assert refs[1].data_url.startswith("data:image/jpeg;base64,")

    def test_missing_directory(self, tmp_path):
        assert load_reference_images(tmp_path / "nope") == []
        assert load_reference_images(None) == []


class TestUserContent:
    def test_sample_images_then_references(self):
        parts = build_user_content(
            ["https://img/1.jpg", "https://img/2.jpg"],
            [ReferenceImage(grade="S", data_url="data:image/png;base64,AA==")],
        )

        urls = [p["image_url"]["url"] for p in parts if p["type"] == "image_url"]
        assert urls == ["https://img/1.jpg", "https://img/2.jpg", "data:image/png;base64,AA=="]
        assert {"type": "text", "text": "Reference S:"} in parts

    def test_without_references(self):
        parts = build_user_content(["https://img/1.jpg"], [])

        assert len(parts) == 2
        assert parts[0]["type"] == "text"
