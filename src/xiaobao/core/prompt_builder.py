"""Prompt compilation for children's literacy newspapers.

A newspaper prompt is assembled from a fixed layout template and a word list
picked from the vocabulary table.  Every theme groups its words in three
roles, each rendered as a labelled section of the poster:

- **core**: the 3 to 5 headline words drawn large in the centre.
- **items**: 5 to 8 everyday objects scattered around the scene.
- **environment**: 3 to 5 words naming parts of the setting.

Every word is stored as ``"<pinyin> <hanzi>"`` so the image model can print
the pinyin line above the characters.

Template Structure::

    [Fixed: poster layout boilerplate]

    Theme: <theme>
    Title: <title>
    Style: <style>

    Core words: ...
    Everyday items: ...
    Environment words: ...

    [Fixed: lettering and colour directive]

Sections are separated by double newlines, matching the way the rest of the
service expects prompts to read.

Usage
-----
::

    builder = PromptBuilder()
    words = builder.resolve_words("超市")
    prompt = builder.build_prompt("超市", "快乐购物", words)
"""

from __future__ import annotations

import copy

from xiaobao.core.errors import ValidationError
from xiaobao.core.models import WordList

# ---------------------------------------------------------------------------
# Fixed boilerplate sections.
# These define the look of every newspaper; callers only vary the theme,
# title, style and word list.
# ---------------------------------------------------------------------------

_LAYOUT_BOILERPLATE = (
    "A vertical A4 children's literacy newspaper (识字小报) for kindergarten and "
    "first-grade readers. Bright hand-drawn cartoon illustration of one lively scene "
    "filling the page, with a large decorative title banner across the top and small "
    "labelled pictures arranged around the scene. Every labelled object shows its "
    "pinyin on the first line and its Chinese characters on the second line, printed "
    "clearly inside a rounded label next to the drawing."
)

_LETTERING_BOILERPLATE = (
    "Lettering: all Chinese characters and pinyin tone marks must be accurate and "
    "legible, no invented characters, no English text. Colour: soft warm pastel "
    "palette on a clean white background, thick friendly outlines, no photo realism."
)

# ---------------------------------------------------------------------------
# Vocabulary table.  Each theme lists 15–20 words split into three roles.
# ---------------------------------------------------------------------------

_THEME_WORDS: dict[str, dict[str, list[str]]] = {
    "超市": {
        "core": ["shōu yín yuán 收银员", "huò jià 货架", "tuī chē 推车", "shōu yín tái 收银台", "jià qiān 价签"],
        "items": [
            "píng guǒ 苹果", "niú nǎi 牛奶", "miàn bāo 面包", "jī dàn 鸡蛋", "bǐng gān 饼干",
            "guǒ zhī 果汁", "qiǎo kè lì 巧克力", "shǔ piàn 薯片", "xǐ fà shuǐ 洗发水",
        ],
        "environment": ["rù kǒu 入口", "chū kǒu 出口", "dēng 灯", "qiáng 墙", "dì bǎn 地板", "gòu wù dài 购物袋"],
    },
    "医院": {
        "core": ["yī shēng 医生", "hù shi 护士", "bìng chuáng 病床", "yào pǐn 药品", "tīng zhěn qì 听诊器"],
        "items": [
            "tǐ wēn jì 体温计", "zhēn tǒng 针筒", "bēng dài 绷带", "yào piàn 药片", "kǒu zhào 口罩",
            "guà hào dān 挂号单", "bìng lì kǎ 病历卡", "shǒu shù dāo 手术刀", "yào shuǐ 药水",
        ],
        "environment": [
            "děng hòu qū 等候区", "zhěn shì 诊室", "yào fáng 药房", "zǒu láng 走廊",
            "chuāng hu 窗户", "mén 门", "yǐ zi 椅子", "diàn tī 电梯",
        ],
    },
    "公园": {
        "core": ["huá huá tī 滑滑梯", "qiū qiān 秋千", "pēn quán 喷泉", "cháng yǐ 长椅", "lù dēng 路灯"],
        "items": [
            "huā duǒ 花朵", "xiǎo niǎo 小鸟", "hú dié 蝴蝶", "xiǎo māo 小猫", "xiǎo gǒu 小狗",
            "qì qiú 气球", "fēng zheng 风筝", "pí qiú 皮球", "pèng peng chē 碰碰车",
        ],
        "environment": [
            "xiǎo lù 小路", "shù mù 树木", "cǎo píng 草坪", "hú 湖",
            "qiáo 桥", "tíng zi 亭子", "wèi shēng jiān 卫生间",
        ],
    },
}

# Number of custom words promoted to "core" when a theme has no table entry.
_CUSTOM_CORE_SIZE = 5


class PromptBuilder:
    """Vocabulary table plus prompt template.

    Each instance owns a private copy of the vocabulary table so words
    added through :meth:`add_custom_words` never leak between instances
    (tests create a fresh builder per application).
    """

    def __init__(self, theme_words: dict[str, dict[str, list[str]]] | None = None) -> None:
        self._theme_words = copy.deepcopy(theme_words if theme_words is not None else _THEME_WORDS)

    def supported_themes(self) -> list[str]:
        return list(self._theme_words)

    def theme_words(self, theme: str) -> WordList | None:
        """Return the table entry for *theme*, or ``None`` if unknown."""
        words = self._theme_words.get(theme)
        if words is None:
            return None
        return WordList(**copy.deepcopy(words))

    def add_custom_words(self, theme: str, words: WordList) -> WordList:
        """Extend (or create) a theme in the shared table and return it."""
        entry = self._theme_words.setdefault(theme, {"core": [], "items": [], "environment": []})
        entry["core"].extend(words.core)
        entry["items"].extend(words.items)
        entry["environment"].extend(words.environment)
        return WordList(**copy.deepcopy(entry))

    def resolve_words(self, theme: str, custom_words: list[str] | None = None) -> WordList:
        """Pick the word list for one request.

        Custom words only affect this request.  For a known theme they are
        appended to ``items``; for an unknown theme they become the whole
        vocabulary, the first five as ``core`` and the rest as ``items``.

        Raises:
            ValidationError: If the theme is unknown and no custom words
                were supplied.
        """
        extra = [word.strip() for word in custom_words or [] if word.strip()]
        words = self.theme_words(theme)
        if words is None:
            if not extra:
                supported = ", ".join(self.supported_themes())
                raise ValidationError(f"Unsupported theme: {theme}. Supported themes: {supported}")
            return WordList(core=extra[:_CUSTOM_CORE_SIZE], items=extra[_CUSTOM_CORE_SIZE:])
        if extra:
            words = words.model_copy(update={"items": [*words.items, *extra]})
        return words

    def build_prompt(self, theme: str, title: str, words: WordList, *, style: str = "cartoon") -> str:
        """Compile the full prompt for one newspaper.

        Args:
            theme: Scene of the newspaper (e.g. "超市").
            title: Headline printed in the title banner.
            words: Vocabulary to label in the scene.
            style: Illustration style hint.

        Returns:
            The compiled prompt with sections separated by double newlines.
        """
        parts: list[str] = [_LAYOUT_BOILERPLATE]

        parts.append(f"Theme: {theme.strip()}\nTitle: 《{title.strip()}》\nStyle: {style.strip() or 'cartoon'}")

        # Empty role lists are omitted so the model is not asked for blank labels.
        sections = (
            ("Core words (draw large in the centre)", words.core),
            ("Everyday items (scatter around the scene)", words.items),
            ("Environment words (label the setting)", words.environment),
        )
        for label, entries in sections:
            if entries:
                parts.append(f"{label}: {', '.join(entries)}")

        parts.append(_LETTERING_BOILERPLATE)
        return "\n\n".join(parts)
