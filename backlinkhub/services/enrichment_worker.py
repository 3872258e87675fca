"""
Backlink Enrichment Worker
==========================

Per-row worker behind the enrichment queue. Finds the WordPress post that
carries a backlink on its network site and records ``wp_post_id`` and
``post_url``; every exit path leaves the backlink in a terminal status.

LOOKUP:
    1. search posts by article title
    2. if nothing matches, search again restricted to one day either side
       of the backlink's created_at
    3. one hit is taken as-is; several hits are disambiguated by looking
       for an anchor to target_url containing anchor_text
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from backlinkhub.config import settings
from backlinkhub.core.errors import WordPressError
from backlinkhub.models.backlinks import Backlink, BacklinkStatus, NetworkSite
from backlinkhub.services.wordpress_client import WordPressClient, post_contains_link

logger = logging.getLogger(__name__)

ClientFactory = Callable[[NetworkSite], WordPressClient]


@dataclass
class EnrichmentResult:
    backlink_id: int
    status: str
    http_status: int = 200
    post_id: Optional[int] = None
    post_url: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == BacklinkStatus.COMPLETED


def default_client_factory(site: NetworkSite) -> WordPressClient:
    return WordPressClient(site.api_url, site.username, site.application_password, timeout=settings.wordpress_timeout_s)


def _set_status(engine: Engine, backlink_id: int, **values) -> None:
    t = Backlink.__table__
    with engine.begin() as conn:
        conn.execute(update(t).where(t.c.id == backlink_id).values(**values))


class EnrichmentWorker:
    def __init__(self, engine: Engine, client_factory: Optional[ClientFactory] = None) -> None:
        self._engine = engine
        self._client_factory = client_factory or default_client_factory

    def _fail(self, backlink_id: int, status: str, error: str, http_status: int) -> EnrichmentResult:
        logger.error("Backlink %s -> %s: %s", backlink_id, status, error)
        _set_status(self._engine, backlink_id, status=status)
        return EnrichmentResult(backlink_id=backlink_id, status=status, http_status=http_status, error=error)

    async def enrich(self, backlink_id: int) -> EnrichmentResult:
        try:
            return await self._enrich(backlink_id)
        except Exception as exc:
            logger.exception("Unhandled error enriching backlink %s", backlink_id)
            try:
                _set_status(self._engine, backlink_id, status=BacklinkStatus.ERROR_UNHANDLED_EXCEPTION)
            except SQLAlchemyError as db_exc:
                logger.error("Could not record failure for backlink %s: %s", backlink_id, db_exc)
            return EnrichmentResult(
                backlink_id=backlink_id,
                status=BacklinkStatus.ERROR_UNHANDLED_EXCEPTION,
                http_status=500,
                error=f"Unhandled error for backlink {backlink_id}: {exc}",
            )

    async def _enrich(self, backlink_id: int) -> EnrichmentResult:
        with Session(self._engine) as session:
            backlink = session.get(Backlink, backlink_id)
            site = session.get(NetworkSite, backlink.network_site_id) if backlink and backlink.network_site_id else None

        if backlink is None:
            return self._fail(backlink_id, BacklinkStatus.ERROR_BACKLINK_NOT_FOUND,
                              f"Backlink with ID {backlink_id} not found", 404)

        if backlink.network_site_id in settings.excluded_network_site_ids:
            status = BacklinkStatus.skipped_network(backlink.network_site_id)
            logger.info("Skipping backlink %s for network site %s", backlink_id, backlink.network_site_id)
            _set_status(self._engine, backlink_id, status=status)
            return EnrichmentResult(backlink_id=backlink_id, status=status)

        if site is None:
            return self._fail(backlink_id, BacklinkStatus.ERROR_NETWORK_SITE_DATA,
                              f"Network site data not found for backlink {backlink_id}", 500)
        if not site.has_credentials():
            return self._fail(backlink_id, BacklinkStatus.ERROR_MISSING_CREDENTIALS,
                              f"Missing WordPress API credentials for backlink {backlink_id}", 400)
        if not backlink.article_title:
            return self._fail(backlink_id, BacklinkStatus.ERROR_MISSING_TITLE,
                              f"Missing article title for backlink {backlink_id}", 400)

        client = self._client_factory(site)
        try:
            posts = await client.search_posts(backlink.article_title)
        except WordPressError as exc:
            return self._fail(backlink_id, BacklinkStatus.ERROR_WP_API_REQUEST, str(exc), exc.status_code or 502)

        if not posts:
            day = backlink.created_at.date()
            logger.info("No posts found by title for backlink %s, retrying around %s", backlink_id, day)
            try:
                posts = await client.search_posts(
                    backlink.article_title,
                    after=day - timedelta(days=1),
                    before=day + timedelta(days=1),
                )
            except WordPressError as exc:
                return self._fail(backlink_id, BacklinkStatus.ERROR_WP_API_REQUEST_WITH_DATE, str(exc),
                                  exc.status_code or 502)

        if not posts:
            return self._fail(backlink_id, BacklinkStatus.ERROR_POST_NOT_FOUND,
                              f"No posts found for backlink {backlink_id}", 404)

        if len(posts) == 1:
            found = posts[0]
        else:
            found = next(
                (p for p in posts if post_contains_link(p, backlink.target_url, backlink.anchor_text)),
                None,
            )
        if found is None:
            return self._fail(backlink_id, BacklinkStatus.ERROR_DISAMBIGUATION_FAILED,
                              f"Could not disambiguate post for backlink {backlink_id}", 404)

        try:
            _set_status(
                self._engine,
                backlink_id,
                wp_post_id=found["id"],
                post_url=found.get("link"),
                status=BacklinkStatus.COMPLETED,
                progress_percent=100,
            )
        except SQLAlchemyError as exc:
            return self._fail(backlink_id, BacklinkStatus.ERROR_FINAL_UPDATE,
                              f"Failed to update backlink {backlink_id}: {exc}", 500)

        logger.info("Backlink %s enriched with post %s", backlink_id, found["id"])
        return EnrichmentResult(
            backlink_id=backlink_id,
            status=BacklinkStatus.COMPLETED,
            post_id=found["id"],
            post_url=found.get("link"),
        )
