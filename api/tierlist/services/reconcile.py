from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from tierlist.core.limits import ImageProfile
from tierlist.services.content import (
    IMAGE_LINK,
    Paragraph,
    ParagraphEdit,
    Section,
    SectionEdit,
    image_references,
    sanitize_text,
    section_image_references,
)
from tierlist.services.errors import DanglingReferenceError
from tierlist.services.transcoder import AssetContext, ImageTranscoder

logger = logging.getLogger(__name__)

PARAGRAPH_IMAGE_PREFIX = "parag_"
PARAGRAPH_IMAGE_ERROR_CODE = "cpgs-01"


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    """Outcome of diffing an edited content tree against the persisted one.

    ``kept`` are old references the edit still uses, ``created`` the files
    written for changed images, ``orphaned`` the old references nothing uses
    any more. Nothing has been deleted yet.
    """

    paragraphs: tuple[Paragraph, ...]
    kept: frozenset[str]
    created: tuple[str, ...]
    orphaned: frozenset[str]


@dataclass(frozen=True, slots=True)
class SectionReconcileResult:
    sections: tuple[Section, ...]
    kept: frozenset[str]
    created: tuple[str, ...]
    orphaned: frozenset[str]


class _ContentWalker:
    def __init__(
        self,
        old_refs: set[str],
        transcoder: ImageTranscoder,
        context: AssetContext,
        profile: ImageProfile,
    ) -> None:
        self.old_refs = old_refs
        self.transcoder = transcoder
        self.context = context
        self.profile = profile
        self.kept: set[str] = set()
        self.created: list[str] = []

    def paragraphs(self, edits: Iterable[ParagraphEdit]) -> tuple[Paragraph, ...]:
        return tuple(self._paragraph(edit) for edit in edits)

    def _paragraph(self, edit: ParagraphEdit) -> Paragraph:
        if edit.type != IMAGE_LINK:
            return Paragraph(type=edit.type, body=sanitize_text(edit.body))

        if not edit.is_changed:
            if edit.body not in self.old_refs:
                raise DanglingReferenceError("cpgs-02", "an image that was never stored was referenced")
            self.kept.add(edit.body)
            return Paragraph(type=IMAGE_LINK, body=edit.body)

        reference = self.transcoder.transcode(
            self.context,
            PARAGRAPH_IMAGE_PREFIX,
            edit.body,
            self.profile,
            error_code=PARAGRAPH_IMAGE_ERROR_CODE,
        )
        self.created.append(reference)
        return Paragraph(type=IMAGE_LINK, body=reference)

    def discard_created(self) -> None:
        if not self.created:
            return
        failed = self.transcoder.storage.delete_many(self.created)
        logger.info(
            "discarded images of failed reconcile entity=%s count=%s failed=%s",
            self.context.entity_id,
            len(self.created),
            len(failed),
        )


def reconcile_paragraphs(
    new_paragraphs: Sequence[ParagraphEdit],
    old_paragraphs: Sequence[Paragraph],
    *,
    transcoder: ImageTranscoder,
    context: AssetContext,
    profile: ImageProfile,
) -> ReconcileResult:
    old_refs = image_references(old_paragraphs)
    walker = _ContentWalker(old_refs, transcoder, context, profile)
    try:
        paragraphs = walker.paragraphs(new_paragraphs)
    except Exception:
        walker.discard_created()
        raise
    return ReconcileResult(
        paragraphs=paragraphs,
        kept=frozenset(walker.kept),
        created=tuple(walker.created),
        orphaned=frozenset(old_refs - walker.kept),
    )


def reconcile_sections(
    new_sections: Sequence[SectionEdit],
    old_sections: Sequence[Section],
    *,
    transcoder: ImageTranscoder,
    context: AssetContext,
    profile: ImageProfile,
) -> SectionReconcileResult:
    old_refs = section_image_references(old_sections)
    walker = _ContentWalker(old_refs, transcoder, context, profile)
    try:
        sections = tuple(
            Section(title=sanitize_text(section.title), paragraphs=walker.paragraphs(section.paragraphs))
            for section in new_sections
        )
    except Exception:
        walker.discard_created()
        raise
    return SectionReconcileResult(
        sections=sections,
        kept=frozenset(walker.kept),
        created=tuple(walker.created),
        orphaned=frozenset(old_refs - walker.kept),
    )
