from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field


class AdditionalPage(BaseModel):
    id: str
    position: int
    # advertisement|promotion; looked up from the collateral record when omitted
    kind: Optional[str] = None


class GeneratePdfRequest(BaseModel):
    front_corporate_id: Optional[str] = Field(default=None, alias="frontCorporateId")
    back_corporate_id: Optional[str] = Field(default=None, alias="backCorporateId")
    product_ids: List[str] = Field(default_factory=list, alias="productIds")
    additional_pages: List[AdditionalPage] = Field(default_factory=list, alias="additionalPages")
    client_id: Optional[str] = Field(default=None, alias="clientId")
    share: bool = True
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")

    class Config:
        populate_by_name = True


class SkippedEntry(BaseModel):
    position: int
    kind: str
    source_id: str
    reason: str
    detail: Optional[str] = None


class GeneratePdfResponse(BaseModel):
    url: str
    ref: str
    page_count: int = Field(alias="pageCount")
    skipped: List[SkippedEntry] = []
    slug: Optional[str] = None
    shared_url: Optional[str] = Field(default=None, alias="sharedUrl")

    class Config:
        populate_by_name = True


class SharedPdfCreate(BaseModel):
    product_ids: List[str] | str = Field(alias="productIds")
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")
    client_id: Optional[str] = Field(default=None, alias="clientId")

    class Config:
        populate_by_name = True


class SharedPdfCreated(BaseModel):
    slug: str
    url: str
    expires_at: datetime = Field(alias="expiresAt")

    class Config:
        populate_by_name = True


class SharedProductSummary(BaseModel):
    id: str
    name: str
    pdf_ref: Optional[str] = Field(default=None, alias="pdfUrl")

    class Config:
        populate_by_name = True


class SharedPdfListItem(BaseModel):
    slug: str = Field(alias="uniqueSlug")
    products: List[SharedProductSummary]
    client_id: Optional[str] = Field(default=None, alias="clientId")
    created_at: datetime = Field(alias="createdAt")
    expires_at: datetime = Field(alias="expiresAt")
    expired: bool = False

    class Config:
        populate_by_name = True
