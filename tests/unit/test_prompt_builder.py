"""Unit tests for PromptBuilder functionality."""

import pytest

from xiaobao.core.errors import ValidationError
from xiaobao.core.models import WordList
from xiaobao.core.prompt_builder import PromptBuilder


class TestPromptBuilderVocabulary:
    """Tests for the theme vocabulary table."""

    def test_supported_themes(self):
        """The built-in table ships the supermarket, hospital and park themes."""
        assert PromptBuilder().supported_themes() == ["超市", "医院", "公园"]

    @pytest.mark.parametrize("theme", ["超市", "医院", "公园"])
    def test_each_theme_has_five_core_words(self, theme):
        """Every theme has five headline words and at least 15 in total."""
        words = PromptBuilder().theme_words(theme)
        assert len(words.core) == 5
        assert words.word_count >= 15

    def test_words_carry_pinyin_and_hanzi(self):
        """Each entry reads '<pinyin> <hanzi>'."""
        words = PromptBuilder().theme_words("超市")
        assert words.core[0] == "shōu yín yuán 收银员"

    def test_unknown_theme(self):
        assert PromptBuilder().theme_words("火星") is None

    def test_returned_lists_are_copies(self):
        """Mutating a returned WordList does not touch the table."""
        pb = PromptBuilder()
        pb.theme_words("超市").core.append("x")
        assert len(pb.theme_words("超市").core) == 5


class TestPromptBuilderCustomWords:
    """Tests for per-request and batch-added words."""

    def test_extra_words_appended_to_items(self):
        pb = PromptBuilder()
        base = pb.theme_words("公园")
        words = pb.resolve_words("公园", ["  shā kēng 沙坑 ", ""])

        assert words.core == base.core
        assert words.items == [*base.items, "shā kēng 沙坑"]
        # Per-request words do not change the table.
        assert pb.theme_words("公园") == base

    def test_unknown_theme_uses_custom_words(self):
        words = PromptBuilder().resolve_words("动物园", ["a", "b", "c", "d", "e", "f"])
        assert words.core == ["a", "b", "c", "d", "e"]
        assert words.items == ["f"]
        assert words.environment == []

    def test_unknown_theme_without_words(self):
        """An unknown theme needs custom words."""
        with pytest.raises(ValidationError, match="Unsupported theme: 火星"):
            PromptBuilder().resolve_words("火星")

    def test_add_custom_words_extends_theme(self):
        pb = PromptBuilder()
        result = pb.add_custom_words("超市", WordList(items=["táng guǒ 糖果"]))

        assert "táng guǒ 糖果" in result.items
        assert "táng guǒ 糖果" in pb.theme_words("超市").items

    def test_add_custom_words_creates_theme(self):
        pb = PromptBuilder()
        result = pb.add_custom_words("学校", WordList(core=["lǎo shī 老师"]))

        assert result.core == ["lǎo shī 老师"]
        assert "学校" in pb.supported_themes()

    def test_builders_do_not_share_tables(self):
        """Words added to one builder do not leak into another."""
        first = PromptBuilder()
        first.add_custom_words("超市", WordList(items=["x"]))
        assert "x" not in PromptBuilder().theme_words("超市").items


class TestPromptBuilderBuild:
    """Tests for prompt compilation."""

    def test_prompt_contains_fields(self):
        pb = PromptBuilder()
        words = pb.resolve_words("超市")
        prompt = pb.build_prompt("超市", "快乐购物", words, style="watercolor")

        assert "Theme: 超市" in prompt
        assert "《快乐购物》" in prompt
        assert "Style: watercolor" in prompt
        for word in words.core + words.items + words.environment:
            assert word in prompt

    def test_sections_joined_by_blank_lines(self):
        prompt = PromptBuilder().build_prompt("超市", "t", WordList(core=["a"]))
        sections = prompt.split("\n\n")
        # Layout, header, core words, lettering.
        assert len(sections) == 4
        assert sections[2] == "Core words (draw large in the centre): a"

    def test_empty_roles_omitted(self):
        prompt = PromptBuilder().build_prompt("超市", "t", WordList(core=["a"]))
        assert "Everyday items" not in prompt
        assert "Environment words" not in prompt

    def test_blank_style_defaults_to_cartoon(self):
        prompt = PromptBuilder().build_prompt("超市", "t", WordList(), style=" ")
        assert "Style: cartoon" in prompt
