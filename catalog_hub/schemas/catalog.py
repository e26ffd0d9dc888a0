import uuid
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, EmailStr, field_validator


class BrandBase(BaseModel):
    name: str
    description: Optional[str] = None

    @field_validator('name', 'description', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class BrandCreate(BrandBase):
    pass


class BrandUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class BrandResponse(BrandBase):
    id: uuid.UUID
    logo_ref: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ProductUpdate(BaseModel):
    brand_id: Optional[uuid.UUID] = None
    name: Optional[str] = None
    size: Optional[str] = None
    flavor: Optional[str] = None
    packet_style: Optional[str] = None
    color: Optional[str] = None
    corners: Optional[str] = None
    tar: Optional[float] = None
    nicotine: Optional[float] = None
    co: Optional[float] = None
    fsp: Optional[bool] = None
    capsules: Optional[int] = None

    @field_validator('name', 'size', 'flavor', 'packet_style', 'color', 'corners', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class ProductResponse(BaseModel):
    id: uuid.UUID
    brand_id: uuid.UUID
    brand_name: Optional[str] = None
    name: str
    size: Optional[str] = None
    flavor: Optional[str] = None
    packet_style: Optional[str] = None
    color: Optional[str] = None
    corners: Optional[str] = None
    tar: Optional[float] = None
    nicotine: Optional[float] = None
    co: Optional[float] = None
    fsp: bool = False
    capsules: int = 0
    image_ref: Optional[str] = None
    pdf_ref: Optional[str] = None
    media_pending: bool = False
    created_at: datetime
    upload_job_ids: List[uuid.UUID] = []


class ProductPage(BaseModel):
    items: List[ProductResponse]
    total: int
    page: int
    page_size: int


class ProductFilterOptions(BaseModel):
    sizes: List[str]
    flavors: List[str]
    packet_styles: List[str]
    colors: List[str]
    corners: List[str]


class CollateralResponse(BaseModel):
    id: uuid.UUID
    kind: str
    title: str
    blob_ref: Optional[str] = None
    created_at: datetime
    upload_job_id: Optional[uuid.UUID] = None

    class Config:
        from_attributes = True


class ClientBase(BaseModel):
    name: str
    company: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    country: Optional[str] = None
    notes: Optional[str] = None

    @field_validator('company', 'email', 'phone', 'country', 'notes', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class ClientCreate(ClientBase):
    pass


class ClientUpdate(BaseModel):
    name: Optional[str] = None
    company: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    country: Optional[str] = None
    notes: Optional[str] = None


class ClientResponse(ClientBase):
    id: uuid.UUID
    created_at: datetime

    class Config:
        from_attributes = True


class UploadJobResponse(BaseModel):
    id: uuid.UUID
    target_type: str
    target_id: uuid.UUID
    field: str
    original_name: str
    status: str
    attempts: int
    error: Optional[str] = None
    created_at: datetime
    finished_at: Optional[datetime] = None

    class Config:
        from_attributes = True
