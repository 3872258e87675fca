"""
Review Queue Tests
==================

Coverage:
  - Rows with an unknown network site, incomplete credentials or a failed
    site lookup are finalised in-line with an error_log and never dispatched
  - Resolvable rows are dispatched with review_id + network_site_id
  - Empty queue short-circuits
"""

import pytest
from sqlalchemy.exc import OperationalError
from unittest.mock import patch

from backlinkhub.models.backlinks import BacklinkReview, NetworkSite, ReviewStatus
from backlinkhub.services import review_queue
from backlinkhub.services.review_queue import ReviewQueue, mark_review, resolve_network_site


def full_site(domain="blog.example.com"):
    return NetworkSite(
        domain=domain,
        api_url=f"https://{domain}/wp-json/wp/v2",
        username="editor",
        application_password="abcd efgh ijkl",
    )


def review(domain, **kw):
    return BacklinkReview(user_email="client@example.com", network_site_domain=domain, wp_post_id_original=10, **kw)


@pytest.fixture
def lookup_down():
    """Every network-site query raises."""
    with patch.object(review_queue, "Session") as session_cls:
        session = session_cls.return_value.__enter__.return_value
        session.exec.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
        yield session_cls


class TestResolveNetworkSite:

    def test_unknown_domain(self, engine):
        site, status, message = resolve_network_site(engine, "missing.example.com")
        assert site is None
        assert status == ReviewStatus.ERROR_NETWORK_SITE_NOT_FOUND
        assert message == "Network site missing.example.com not found."

    def test_missing_credentials(self, engine, store):
        bare = store.add(NetworkSite(domain="bare.example.com", api_url="https://bare.example.com"))
        site, status, message = resolve_network_site(engine, "bare.example.com")
        assert site is None
        assert status == ReviewStatus.ERROR_MISSING_CREDENTIALS
        assert message == f"Missing WordPress API credentials for network site {bare.id}."

    def test_resolved(self, engine, store):
        stored = store.add(full_site())
        site, status, message = resolve_network_site(engine, "blog.example.com")
        assert site.id == stored.id
        assert status is None and message is None

    def test_lookup_failure(self, engine, lookup_down):
        site, status, message = resolve_network_site(engine, "blog.example.com")
        assert site is None
        assert status == ReviewStatus.ERROR_NETWORK_SITE_NOT_FOUND
        assert message.startswith("Network site blog.example.com lookup failed: ")
        assert "database is locked" in message


class TestReviewQueue:

    def test_defaults(self, engine, invoker):
        queue = ReviewQueue(engine, invoker)
        assert queue.name == "process-backlinks-to-review"
        assert queue.batch_size == 100
        assert queue.pending_status == ReviewStatus.PENDING_REVIEW

    @pytest.mark.asyncio
    async def test_dispatches_resolvable_rows(self, engine, store, invoker):
        site = store.add(full_site())
        good = store.add(review("blog.example.com"))

        result = await ReviewQueue(engine, invoker).run()

        assert result.dispatched == 1
        assert result.skipped == 0
        assert invoker.calls == [
            ("process-backlink-review", {"review_id": good.id, "network_site_id": site.id}),
        ]
        assert store.get(BacklinkReview, good.id).status == ReviewStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_unresolvable_rows_are_finalised_in_line(self, engine, store, invoker):
        store.add(full_site())
        store.add(NetworkSite(domain="nocreds.example.com"))
        good = store.add(review("blog.example.com"))
        unknown = store.add(review("gone.example.com"))
        nocreds = store.add(review("nocreds.example.com"))

        result = await ReviewQueue(engine, invoker).run()

        assert result.claimed == 3
        assert result.skipped == 2
        assert result.dispatched == 1
        assert [payload["review_id"] for _, payload in invoker.calls] == [good.id]

        gone_row = store.get(BacklinkReview, unknown.id)
        assert gone_row.status == ReviewStatus.ERROR_NETWORK_SITE_NOT_FOUND
        assert gone_row.error_log == "Network site gone.example.com not found."
        assert store.get(BacklinkReview, nocreds.id).status == ReviewStatus.ERROR_MISSING_CREDENTIALS

    @pytest.mark.asyncio
    async def test_lookup_failure_finalises_row_without_dispatch(self, engine, store, invoker, lookup_down):
        store.add(full_site())
        row = store.add(review("blog.example.com"))

        result = await ReviewQueue(engine, invoker).run()

        assert result.claimed == 1
        assert result.skipped == 1
        assert result.dispatched == 0
        assert invoker.calls == []
        stored = store.get(BacklinkReview, row.id)
        assert stored.status == ReviewStatus.ERROR_NETWORK_SITE_NOT_FOUND
        assert "lookup failed" in stored.error_log
        assert "database is locked" in stored.error_log

    @pytest.mark.asyncio
    async def test_nothing_pending(self, engine, store, invoker):
        store.add(review("blog.example.com", status=ReviewStatus.SKIPPED_DUPLICATE))
        result = await ReviewQueue(engine, invoker).run()
        assert result.nothing_to_do is True
        assert invoker.calls == []


def test_mark_review_sets_status_and_log(engine, store):
    row = store.add(review("blog.example.com"))
    mark_review(engine, row.id, ReviewStatus.ERROR_CREATE_USER, "Failed to create user")
    stored = store.get(BacklinkReview, row.id)
    assert stored.status == ReviewStatus.ERROR_CREATE_USER
    assert stored.error_log == "Failed to create user"
