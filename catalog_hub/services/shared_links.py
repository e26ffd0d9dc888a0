"""
Shareable links to a set of products.

A link stores product ids, not the merged PDF: viewers always see the live
product data. Expiry is evaluated when a link is read; nothing has to delete
expired rows for them to stop resolving.
"""
import secrets
import string
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import SharedLink

logger = structlog.get_logger(__name__)

SLUG_ALPHABET = string.ascii_letters + string.digits + "-_"
ID_DELIMITER = ","


@dataclass(frozen=True)
class SharedLinkView:
    slug: str
    product_ids: List[str]
    expires_at: datetime
    created_at: datetime
    created_by_id: str
    client_id: Optional[str] = None


def generate_slug(length: Optional[int] = None) -> str:
    length = max(10, length or settings.share_slug_length)
    return "".join(secrets.choice(SLUG_ALPHABET) for _ in range(length))


def join_ids(product_ids: Iterable[str]) -> str:
    return ID_DELIMITER.join(product_ids)


def split_ids(raw: str) -> List[str]:
    return [p for p in (part.strip() for part in (raw or "").split(ID_DELIMITER)) if p]


def as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back; stored values are always UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_product_ids(product_ids: Iterable[str]) -> List[str]:
    """Ordered set of product ids: strips blanks and repeats, keeps first occurrence order."""
    seen = set()
    ordered = []
    for raw in product_ids:
        pid = str(raw).strip()
        if not pid or pid in seen:
            continue
        if ID_DELIMITER in pid:
            raise ValueError(f"product id {pid!r} contains {ID_DELIMITER!r}")
        seen.add(pid)
        ordered.append(pid)
    return ordered


def _view(link: SharedLink) -> SharedLinkView:
    return SharedLinkView(
        slug=link.slug,
        product_ids=split_ids(link.product_ids),
        expires_at=as_utc(link.expires_at),
        created_at=as_utc(link.created_at),
        created_by_id=str(link.created_by_id),
        client_id=str(link.client_id) if link.client_id else None,
    )


class ShareableLinkService:
    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        product_ids: Iterable[str],
        owner_id,
        expires_at: Optional[datetime] = None,
        client_id=None,
        now: Optional[datetime] = None,
    ) -> SharedLinkView:
        ids = normalize_product_ids(product_ids)
        if not ids:
            raise ValueError("At least one product id is required")
        now = now or datetime.now(timezone.utc)
        if expires_at is None:
            expires_at = now + timedelta(days=settings.share_default_days)
        expires_at = as_utc(expires_at)
        if expires_at <= now:
            raise ValueError("expires_at must be in the future")

        owner_uuid = owner_id if isinstance(owner_id, uuid.UUID) else uuid.UUID(str(owner_id))
        client_uuid = None
        if client_id:
            client_uuid = client_id if isinstance(client_id, uuid.UUID) else uuid.UUID(str(client_id))

        retried = False
        while True:
            link = SharedLink(
                slug=generate_slug(),
                product_ids=join_ids(ids),
                client_id=client_uuid,
                created_by_id=owner_uuid,
                created_at=now,
                expires_at=expires_at,
            )
            self.db.add(link)
            try:
                self.db.commit()
                break
            except IntegrityError:
                self.db.rollback()
                # One retry covers the theoretical slug collision
                if retried:
                    raise
                retried = True
                logger.warning("shared_link_slug_collision", slug=link.slug)

        self.db.refresh(link)
        logger.info("shared_link_created", slug=link.slug, products=len(ids), expires_at=expires_at.isoformat())
        return _view(link)

    def resolve(self, slug: str, now: Optional[datetime] = None) -> Optional[SharedLinkView]:
        """Return the link for slug, or None when it is unknown or expired."""
        link = self.db.query(SharedLink).filter(SharedLink.slug == slug).first()
        if link is None:
            return None
        now = now or datetime.now(timezone.utc)
        if now > as_utc(link.expires_at):
            logger.info("shared_link_expired", slug=slug)
            return None
        return _view(link)

    def list_for_owner(self, owner_id) -> List[SharedLinkView]:
        owner_uuid = owner_id if isinstance(owner_id, uuid.UUID) else uuid.UUID(str(owner_id))
        links = (
            self.db.query(SharedLink)
            .filter(SharedLink.created_by_id == owner_uuid)
            .order_by(SharedLink.created_at.desc())
            .all()
        )
        return [_view(link) for link in links]

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        expired = [
            link for link in self.db.query(SharedLink).all()
            if now > as_utc(link.expires_at)
        ]
        for link in expired:
            self.db.delete(link)
        self.db.commit()
        if expired:
            logger.info("shared_links_purged", count=len(expired))
        return len(expired)
