"""
Deliverable module variants as a tagged union on `type`.
Settlement and the download subsystem match on the concrete class, never on optional fields.
"""
from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class _ModuleBase(BaseModel):
    id: int
    product_id: int
    title: str | None = None
    sort_order: int = 0

    model_config = {"frozen": True}


class FileModule(_ModuleBase):
    type: Literal["file"] = "file"
    file_url: str
    file_name: str | None = None
    file_size: int | None = None

    @property
    def display_title(self) -> str:
        return self.title or self.file_name or f"File {self.id}"


class LinkModule(_ModuleBase):
    type: Literal["link"] = "link"
    url: str
    url_label: str | None = None


class TextModule(_ModuleBase):
    type: Literal["text"] = "text"
    content: str


class EmbedModule(_ModuleBase):
    type: Literal["embed"] = "embed"
    embed_url: str
    provider: str | None = None


Deliverable = Annotated[
    Union[FileModule, LinkModule, TextModule, EmbedModule],
    Field(discriminator="type"),
]

_deliverable_adapter: TypeAdapter = TypeAdapter(Deliverable)


def to_deliverable(row) -> Deliverable:
    """Build the variant for a ProductModule row. Raises pydantic.ValidationError on an inconsistent row."""
    data = {
        "id": row.id,
        "product_id": row.product_id,
        "title": row.title,
        "sort_order": row.sort_order or 0,
        "type": row.type,
    }
    if row.type == "file":
        data.update(file_url=row.file_url, file_name=row.file_name, file_size=row.file_size)
    elif row.type == "link":
        data.update(url=row.url, url_label=row.url_label)
    elif row.type == "text":
        data.update(content=row.content)
    elif row.type == "embed":
        data.update(embed_url=row.embed_url, provider=row.provider)
    return _deliverable_adapter.validate_python(data)
