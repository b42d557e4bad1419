from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

DocumentType = Literal["BRD", "FRS", "SRS"]
WireframeStyle = Literal["Sketchy", "Clean", "High-Fidelity"]
GenerationKind = Literal["document", "flowchart", "wireframes"]


class _Request(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


class DocumentRequest(_Request):
    title: str = Field(min_length=2, max_length=200)
    description: str = ""
    document_type: DocumentType = "BRD"
    uploaded_file: str | None = None


class FlowchartRequest(_Request):
    title: str = Field(min_length=2, max_length=200)
    description: str = ""
    uploaded_file: str | None = None


class WireframesRequest(_Request):
    title: str = Field(min_length=2, max_length=200)
    description: str = Field(min_length=1)
    style: WireframeStyle = "Clean"
    uploaded_file: str | None = None


class ExportPdfRequest(_Request):
    markdown: str
    title: str = "document"
    header_left: str | None = None
    header_right: str | None = None
    watermark: str | None = None


class GenerationResponse(BaseModel):
    generation_id: str
    kind: GenerationKind
    title: str
    created_at: str
    payload: dict[str, Any]
    warnings: list[str] = Field(default_factory=list)


class GenerationSummary(BaseModel):
    generation_id: str
    kind: GenerationKind
    title: str
    created_at: str


class UploadResponse(BaseModel):
    data_uri: str
    mime: str
    size: int
    filename: str | None = None


class AdminSettingsResponse(BaseModel):
    defaults: dict[str, Any]
    settings: dict[str, Any]
    effective: dict[str, Any]


class AdminSettingsUpdateRequest(BaseModel):
    settings: dict[str, Any]
