"""Tests for the knowledge-base API endpoints."""

import pytest

TEXT = ("Our refund policy allows refunds within 30 days of purchase. " * 3).encode("utf-8")


async def upload(client, filename="faq.txt", data=TEXT, metadata=None, headers=None):
    form = {"metadata": metadata} if metadata is not None else None
    return await client.post(
        "/api/v1/knowledge/documents",
        files={"file": (filename, data, "text/plain")},
        data=form,
        headers=headers,
    )


class TestUpload:
    @pytest.mark.asyncio
    async def test_upload_queues_document_and_job(self, client, services):
        response = await upload(client, metadata='{"team": "support"}')

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "queued"
        assert body["filename"] == "faq.txt"
        assert body["file_size"] == len(TEXT)
        assert body["metadata"] == {"team": "support"}
        assert await services.job_queue.process_next_job() is True

    @pytest.mark.asyncio
    async def test_disallowed_extension(self, client, services):
        response = await upload(client, filename="malware.exe")

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        assert await services.job_queue.process_next_job() is False

    @pytest.mark.asyncio
    async def test_empty_file(self, client):
        response = await upload(client, data=b"")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_metadata_must_be_an_object(self, client):
        response = await upload(client, metadata="[1, 2]")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_oversized_file(self, client, services):
        services.settings.upload.max_file_size = 10

        response = await upload(client)

        assert response.status_code == 422


    @pytest.mark.asyncio
    async def test_11th_upload_in_the_window_gets_429(self, client):
        for i in range(10):
            response = await upload(client, filename=f"doc{i}.txt")
            assert response.status_code == 202

        response = await upload(client, filename="doc10.txt")

        assert response.status_code == 429
        assert response.json()["error"]["message"] == "Too many upload requests"
        assert "Retry-After" in response.headers

    @pytest.mark.asyncio
    async def test_upload_limit_is_per_admin_key(self, client, services):
        services.settings.rate_limit.upload_requests = 1
        services.settings.auth.admin_api_key_enabled = True
        services.settings.auth.admin_api_key = "admin-secret"
        headers = {"X-Admin-API-Key": "admin-secret"}

        assert (await upload(client, headers=headers)).status_code == 202
        assert (await upload(client, headers=headers)).status_code == 429

        services.settings.auth.admin_api_key = "rotated-secret"
        response = await upload(client, headers={"X-Admin-API-Key": "rotated-secret"})

        assert response.status_code == 202


class TestDocuments:
    @pytest.mark.asyncio
    async def test_status_follows_ingestion(self, client, services):
        document_id = (await upload(client)).json()["id"]

        response = await client.get(f"/api/v1/knowledge/documents/{document_id}/status")
        assert response.json()["status"] == "queued"

        await services.job_queue.process_next_job()

        response = await client.get(f"/api/v1/knowledge/documents/{document_id}/status")
        body = response.json()
        assert body["status"] == "processed"
        assert body["chunks_total"] == 1
        assert body["chunks_processed"] == 1

    @pytest.mark.asyncio
    async def test_list_is_paginated(self, client):
        await upload(client, filename="a.txt")
        await upload(client, filename="b.txt")

        response = await client.get("/api/v1/knowledge/documents", params={"limit": 1})

        body = response.json()
        assert body["total"] == 2
        assert body["limit"] == 1
        assert len(body["documents"]) == 1

    @pytest.mark.asyncio
    async def test_unknown_document_is_404(self, client):
        response = await client.get("/api/v1/knowledge/documents/doc_unknown")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_delete_removes_document_and_cache_entries(self, client, services):
        document_id = (await upload(client)).json()["id"]
        await services.job_queue.process_next_job()
        assert len(services.cache) == 1

        response = await client.delete(f"/api/v1/knowledge/documents/{document_id}")
        assert response.status_code == 204
        assert len(services.cache) == 0

        response = await client.delete(f"/api/v1/knowledge/documents/{document_id}")
        assert response.status_code == 404

        search = await client.post("/api/v1/knowledge/search", json={"query": "refund"})
        assert search.json()["results"] == []


class TestSearch:
    @pytest.mark.asyncio
    async def test_search_returns_ranked_results_with_sources(self, client, services):
        document_id = (await upload(client)).json()["id"]
        await services.job_queue.process_next_job()

        response = await client.post(
            "/api/v1/knowledge/search", json={"query": "refund policy", "top_k": 3}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["query"] == "refund policy"
        assert len(body["results"]) == 1
        result = body["results"][0]
        assert result["document_id"] == document_id
        assert result["source_file"] == "faq.txt"
        assert 0.0 < result["similarity"] <= 1.0

    @pytest.mark.asyncio
    async def test_top_k_is_bounded(self, client):
        response = await client.post("/api/v1/knowledge/search", json={"query": "x", "top_k": 50})
        assert response.status_code == 422


class TestAdminAuth:
    @pytest.mark.asyncio
    async def test_admin_key_required_when_enabled(self, client, services):
        services.settings.auth.admin_api_key_enabled = True
        services.settings.auth.admin_api_key = "admin-secret"

        response = await client.get("/api/v1/knowledge/documents")
        assert response.status_code == 401

        response = await client.get(
            "/api/v1/knowledge/documents", headers={"X-Admin-API-Key": "admin-secret"}
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_enabled_without_key_is_misconfigured(self, client, services):
        services.settings.auth.admin_api_key_enabled = True
        services.settings.auth.admin_api_key = None

        response = await client.get("/api/v1/knowledge/documents")

        assert response.status_code == 500
