"""Tests for health check endpoint and route registration."""

import pytest
from httpx import AsyncClient


@pytest.mark.anyio
async def test_health_check(client: AsyncClient) -> None:
    """Test that /api/health returns status ok."""
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.anyio
async def test_openapi_lists_logical_fk_routes(client: AsyncClient) -> None:
    response = await client.get("/openapi.json")

    assert response.status_code == 200
    schema = response.json()
    assert schema["info"]["title"] == "SchemaLens API"
    assert "/api/logical-fks/{project_id}/detect-and-persist" in schema["paths"]
    assert "/api/logical-fks/{project_id}/{logical_fk_id}/confirm" in schema["paths"]
