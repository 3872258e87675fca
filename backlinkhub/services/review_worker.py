"""
Backlink Review Worker
======================

Per-row worker behind the review queue. Turns one ``backlinks_to_review``
row into a completed backlink:

    fetch post -> first link -> user by email -> client site by host
    -> duplicate check -> insert backlink -> delete review row

Each failing step leaves the review row in its own ``error_*`` status with
a readable ``error_log``. A duplicate is not an error: the review row is
deleted and the result is ``skipped_duplicate``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

from sqlalchemy import delete
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from backlinkhub.core.errors import WordPressError
from backlinkhub.models.backlinks import (
    AppUser,
    Backlink,
    BacklinkReview,
    BacklinkStatus,
    ClientSite,
    NetworkSite,
    ReviewStatus,
)
from backlinkhub.services.enrichment_worker import ClientFactory, default_client_factory
from backlinkhub.services.review_queue import mark_review, resolve_network_site
from backlinkhub.services.wordpress_client import extract_first_link

logger = logging.getLogger(__name__)


@dataclass
class ReviewResult:
    review_id: int
    status: str
    http_status: int = 200
    backlink_id: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (ReviewStatus.SUCCESS, ReviewStatus.SKIPPED_DUPLICATE)


class _StepFailed(Exception):
    def __init__(self, status: str, message: str, http_status: int = 500) -> None:
        super().__init__(message)
        self.status = status
        self.message = message
        self.http_status = http_status


def client_site_url(target_url: str) -> str:
    """Host of ``target_url``; the full URL when it has none."""
    return urlparse(target_url).hostname or target_url


class ReviewWorker:
    def __init__(self, engine: Engine, client_factory: Optional[ClientFactory] = None) -> None:
        self._engine = engine
        self._client_factory = client_factory or default_client_factory

    async def process(self, review_id: int, network_site_id: Optional[int] = None) -> ReviewResult:
        try:
            return await self._process(review_id, network_site_id)
        except _StepFailed as failure:
            logger.error("Error for review item %s: %s", review_id, failure.message)
            mark_review(self._engine, review_id, failure.status, failure.message)
            return ReviewResult(review_id, failure.status, http_status=failure.http_status, error=failure.message)
        except Exception as exc:
            message = f"Unhandled exception for review item {review_id}: {exc}"
            logger.exception("Critical unhandled error for review item %s", review_id)
            mark_review(self._engine, review_id, ReviewStatus.ERROR_UNHANDLED_EXCEPTION, message)
            return ReviewResult(review_id, ReviewStatus.ERROR_UNHANDLED_EXCEPTION, http_status=500, error=message)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _load(self, review_id: int, network_site_id: Optional[int]):
        with Session(self._engine) as session:
            review = session.get(BacklinkReview, review_id)
            if review is None:
                return None, None
            site = session.get(NetworkSite, network_site_id) if network_site_id else None
        if site is None or not site.has_credentials():
            site, error_status, message = resolve_network_site(self._engine, review.network_site_domain)
            if site is None:
                raise _StepFailed(error_status, message, 400 if error_status == ReviewStatus.ERROR_MISSING_CREDENTIALS else 404)
        return review, site

    def _find_or_create_user(self, email: str) -> str:
        try:
            with Session(self._engine) as session:
                user = session.exec(select(AppUser).where(AppUser.email == email)).first()
                if user is not None:
                    logger.info("Existing user %s found for email %s", user.id, email)
                    return user.id
                user = AppUser(email=email)
                session.add(user)
                session.commit()
                logger.info("New user %s created for email %s", user.id, email)
                return user.id
        except SQLAlchemyError as exc:
            raise _StepFailed(ReviewStatus.ERROR_CREATE_USER, f"Failed to create user for email {email}: {exc}") from exc

    def _find_or_create_client_site(self, user_id: str, url: str) -> int:
        query = select(ClientSite).where(ClientSite.user_id == user_id, ClientSite.url == url)
        try:
            with Session(self._engine) as session:
                site = session.exec(query).first()
                if site is None:
                    site = ClientSite(user_id=user_id, url=url)
                    session.add(site)
                    try:
                        session.commit()
                    except IntegrityError:
                        # created concurrently for the same (user_id, url)
                        session.rollback()
                        site = session.exec(query).one()
                return site.id
        except SQLAlchemyError as exc:
            raise _StepFailed(
                ReviewStatus.ERROR_FIND_OR_CREATE_CLIENT_SITE,
                f"Failed to find or create client site for URL {url}: {exc}",
            ) from exc

    def _find_duplicate(self, target_url: str, anchor_text: Optional[str], network_site_id: int,
                        client_site_id: int) -> Optional[int]:
        anchor_clause = Backlink.anchor_text.is_(None) if anchor_text is None else Backlink.anchor_text == anchor_text
        with Session(self._engine) as session:
            return session.exec(
                select(Backlink.id).where(
                    Backlink.target_url == target_url,
                    anchor_clause,
                    Backlink.network_site_id == network_site_id,
                    Backlink.client_site_id == client_site_id,
                )
            ).first()

    def _delete_review(self, review_id: int) -> None:
        t = BacklinkReview.__table__
        with self._engine.begin() as conn:
            conn.execute(delete(t).where(t.c.id == review_id))

    async def _process(self, review_id: int, network_site_id: Optional[int]) -> ReviewResult:
        review, site = self._load(review_id, network_site_id)
        if review is None:
            logger.error("Review item %s not found", review_id)
            return ReviewResult(review_id, ReviewStatus.ERROR_UNHANDLED_EXCEPTION, http_status=404,
                                error=f"Review item {review_id} not found")

        client = self._client_factory(site)
        try:
            post = await client.get_post(review.wp_post_id_original)
        except WordPressError as exc:
            raise _StepFailed(
                ReviewStatus.ERROR_WP_API_REQUEST,
                f"WordPress API request failed for post {review.wp_post_id_original}: {exc.detail}",
                exc.status_code or 502,
            ) from exc

        target_url, anchor_text = extract_first_link((post.get("content") or {}).get("rendered") or "")
        if not target_url:
            raise _StepFailed(
                ReviewStatus.ERROR_NO_EXTERNAL_LINK_FOUND,
                f"No link found in post {review.wp_post_id_original}.",
                404,
            )

        user_id = self._find_or_create_user(review.user_email)
        client_site_id = self._find_or_create_client_site(user_id, client_site_url(target_url))

        if self._find_duplicate(target_url, anchor_text, site.id, client_site_id) is not None:
            message = f"Backlink with target_url {target_url} and anchor_text {anchor_text} already exists."
            logger.info("Skipping review item %s: %s", review_id, message)
            try:
                self._delete_review(review_id)
            except SQLAlchemyError as exc:
                logger.error("Failed to delete skipped review item %s: %s", review_id, exc)
            return ReviewResult(review_id, ReviewStatus.SKIPPED_DUPLICATE, error=message)

        created_at = review.original_created_at or datetime.now(timezone.utc)
        if created_at.tzinfo is None:
            # SQLite hands back naive values; stored times are UTC
            created_at = created_at.replace(tzinfo=timezone.utc)
        try:
            with Session(self._engine) as session:
                backlink = Backlink(
                    user_id=user_id,
                    client_site_id=client_site_id,
                    network_site_id=site.id,
                    target_url=target_url,
                    anchor_text=anchor_text,
                    article_title=review.article_title,
                    wp_post_id=review.wp_post_id_original,
                    post_url=post.get("link"),
                    status=BacklinkStatus.COMPLETED,
                    progress_percent=100,
                    created_at=created_at,
                )
                session.add(backlink)
                session.commit()
                backlink_id = backlink.id
        except SQLAlchemyError as exc:
            raise _StepFailed(
                ReviewStatus.ERROR_INSERT_BACKLINK,
                f"Failed to insert backlink for review item {review_id}: {exc}",
            ) from exc

        try:
            self._delete_review(review_id)
        except SQLAlchemyError as exc:
            raise _StepFailed(
                ReviewStatus.ERROR_DELETE_REVIEW_ITEM,
                f"Failed to delete review item {review_id}: {exc}",
            ) from exc

        logger.info("Review item %s moved to backlink %s", review_id, backlink_id)
        return ReviewResult(review_id, ReviewStatus.SUCCESS, backlink_id=backlink_id)
