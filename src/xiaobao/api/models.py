"""Pydantic request models for the Xiaobao API.

These models define the JSON schema for the endpoints that accept a body.
Presence of ``theme`` and ``title`` is deliberately not enforced here: the
engine owns that rule so it reports the same 400 message whether a field is
absent, null or blank.

Models
------
GenerateRequest
    Payload for ``POST /api/v1/newspaper/generate``.
WordsBatchRequest
    Payload for ``POST /api/v1/newspaper/words/batch``.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from xiaobao.core.models import WordList


class GenerateRequest(BaseModel):
    """Request body for the ``POST /api/v1/newspaper/generate`` endpoint.

    Attributes:
        theme: Scene of the newspaper; must be a supported theme unless
            ``custom_words`` are supplied.
        title: Headline printed in the title banner.
        style: Illustration style hint.  Defaults to ``"cartoon"``.
        custom_words: Extra ``"<pinyin> <hanzi>"`` words for this request.
        callback_url: Optional URL that receives the terminal task state.
    """

    theme: str | None = Field(
        default=None,
        description="Newspaper theme, e.g. '超市'.",
    )
    title: str | None = Field(
        default=None,
        description="Title printed on the newspaper, e.g. '快乐购物'.",
    )
    style: str = Field(
        default="cartoon",
        description="Illustration style hint.",
    )
    custom_words: list[str] = Field(
        default_factory=list,
        description="Additional words for this request only.",
    )
    callback_url: str | None = Field(
        default=None,
        description="URL notified once the task reaches a terminal state.",
    )


class WordsBatchRequest(BaseModel):
    """Request body for the ``POST /api/v1/newspaper/words/batch`` endpoint.

    Attributes:
        theme: Theme to extend; created when it does not exist yet.
        words: Words to append, grouped by role.
    """

    theme: str | None = Field(
        default=None,
        description="Theme to extend or create.",
    )
    words: WordList | None = Field(
        default=None,
        description="Words to add, grouped into core/items/environment.",
    )
