"""Bilingual field descriptions attached to configuration models."""

from typing import ClassVar, Dict, Optional

from pydantic import BaseModel


class Description(BaseModel):
    """A field description in English and Japanese."""

    en: str
    ja: Optional[str] = None

    def get_text(self, lang_code: str = "en") -> str:
        if lang_code == "ja" and self.ja:
            return self.ja
        return self.en


class I18nMixin:
    """Adds description lookup to models that declare `DESCRIPTIONS`."""

    DESCRIPTIONS: ClassVar[Dict[str, Description]] = {}

    @classmethod
    def get_field_description(cls, field_name: str, lang_code: str = "en") -> Optional[str]:
        description = cls.DESCRIPTIONS.get(field_name)
        return description.get_text(lang_code) if description else None
