"""
Backlink Pipeline Models
========================

SQLModel tables read and written by the background queues and workers.
Only the columns the pipeline touches are modelled.

- Backlink: a purchased link placed on a network site; enrichment queue rows.
- BacklinkReview: imported backlinks awaiting review; review queue rows.
- NetworkSite: partner WordPress site plus its REST credentials.
- ClientSite: a client's own site, unique per (user_id, url).
- AppUser: platform user, looked up by email.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BacklinkStatus:
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR_BACKLINK_NOT_FOUND = "error_backlink_not_found"
    ERROR_NETWORK_SITE_DATA = "error_network_site_data"
    ERROR_MISSING_CREDENTIALS = "error_missing_credentials"
    ERROR_MISSING_TITLE = "error_missing_title"
    ERROR_WP_API_REQUEST = "error_wp_api_request"
    ERROR_WP_API_REQUEST_WITH_DATE = "error_wp_api_request_with_date"
    ERROR_POST_NOT_FOUND = "error_post_not_found"
    ERROR_DISAMBIGUATION_FAILED = "error_disambiguation_failed"
    ERROR_FINAL_UPDATE = "error_final_update"
    ERROR_UNHANDLED_EXCEPTION = "error_unhandled_exception"

    @staticmethod
    def skipped_network(network_site_id: int) -> str:
        return f"skipped_network_{network_site_id}"


class ReviewStatus:
    PENDING_REVIEW = "pending_review"
    PROCESSING = "processing"
    SUCCESS = "success"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    ERROR_NETWORK_SITE_NOT_FOUND = "error_network_site_not_found"
    ERROR_MISSING_CREDENTIALS = "error_missing_credentials"
    ERROR_WP_API_REQUEST = "error_wp_api_request"
    ERROR_NO_EXTERNAL_LINK_FOUND = "error_no_external_link_found"
    ERROR_CREATE_USER = "error_create_user"
    ERROR_FIND_OR_CREATE_CLIENT_SITE = "error_find_or_create_client_site"
    ERROR_INSERT_BACKLINK = "error_insert_backlink"
    ERROR_DELETE_REVIEW_ITEM = "error_delete_review_item"
    ERROR_UNHANDLED_EXCEPTION = "error_unhandled_exception"


class NetworkSite(SQLModel, table=True):
    __tablename__ = "network_sites"

    id: Optional[int] = Field(default=None, primary_key=True)
    domain: str = Field(index=True, unique=True, max_length=255)
    api_url: Optional[str] = Field(default=None, max_length=512)
    username: Optional[str] = Field(default=None, max_length=255)
    application_password: Optional[str] = Field(default=None, max_length=255)

    def has_credentials(self) -> bool:
        return bool(self.api_url and self.username and self.application_password)


class AppUser(SQLModel, table=True):
    __tablename__ = "app_users"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True, max_length=36)
    email: str = Field(index=True, unique=True, max_length=320)
    created_at: datetime = Field(default_factory=_utcnow)


class ClientSite(SQLModel, table=True):
    __tablename__ = "client_sites"
    __table_args__ = (UniqueConstraint("user_id", "url", name="uq_client_sites_user_url"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=36)
    url: str = Field(max_length=512)
    type: str = Field(default="unknown", max_length=64)


class Backlink(SQLModel, table=True):
    __tablename__ = "backlinks"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[str] = Field(default=None, index=True, max_length=36)
    client_site_id: Optional[int] = Field(default=None, index=True)
    network_site_id: Optional[int] = Field(default=None, index=True)
    target_url: Optional[str] = Field(default=None, max_length=2048)
    anchor_text: Optional[str] = Field(default=None, max_length=512)
    article_title: Optional[str] = Field(default=None, max_length=512)
    wp_post_id: Optional[int] = Field(default=None)
    post_url: Optional[str] = Field(default=None, max_length=2048)
    status: str = Field(default="pending", index=True, max_length=64)
    progress_percent: int = Field(default=0)
    created_at: datetime = Field(default_factory=_utcnow)


class BacklinkReview(SQLModel, table=True):
    __tablename__ = "backlinks_to_review"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_email: str = Field(max_length=320)
    network_site_domain: str = Field(max_length=255)
    article_title: Optional[str] = Field(default=None, max_length=512)
    wp_post_id_original: Optional[int] = Field(default=None)
    original_created_at: Optional[datetime] = Field(default=None)
    status: str = Field(default=ReviewStatus.PENDING_REVIEW, index=True, max_length=64)
    error_log: Optional[str] = Field(default=None)
