from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tierlist.services.content import Paragraph, ParagraphEdit, Section, SectionEdit


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ParagraphIn(CamelModel):
    type: str
    body: str = ""
    is_changed: bool = False

    def to_edit(self) -> ParagraphEdit:
        return ParagraphEdit(type=self.type, body=self.body, is_changed=self.is_changed)


class ParagraphOut(CamelModel):
    type: str
    body: str

    @classmethod
    def from_paragraph(cls, paragraph: Paragraph) -> "ParagraphOut":
        return cls(type=paragraph.type, body=paragraph.body)


class SectionIn(CamelModel):
    title: str = ""
    paragraphs: list[ParagraphIn] = Field(default_factory=list)

    def to_edit(self) -> SectionEdit:
        return SectionEdit(title=self.title, paragraphs=tuple(p.to_edit() for p in self.paragraphs))


class SectionOut(CamelModel):
    title: str
    paragraphs: list[ParagraphOut] = Field(default_factory=list)

    @classmethod
    def from_section(cls, section: Section) -> "SectionOut":
        return cls(
            title=section.title,
            paragraphs=[ParagraphOut.from_paragraph(p) for p in section.paragraphs],
        )


class ErrorOut(BaseModel):
    code: str
    message: str


def public_url(public_base_url: str, reference: str) -> str:
    if not reference:
        return ""
    return f"{public_base_url.rstrip('/')}/{reference}"
