import base64

import pytest
from httpx import ASGITransport, AsyncClient

from fieldphoto.config import settings
from fieldphoto.main import app


def _data_url(data: bytes, mime: str = "image/jpeg") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode()}"


@pytest.mark.asyncio
async def test_multipart_upload(job_id, jpeg):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post(
            "/api/job-photos/upload",
            files={
                "photo": ("photo.jpg", jpeg(), "image/jpeg"),
                "thumb": ("thumb.jpg", jpeg(64, 48), "image/jpeg"),
            },
            data={"jobId": job_id, "categoryId": "2", "serialNumber": "SN1234567", "meter": "3.5"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["entryId"]
        assert body["categoryId"] == "2"
        assert body["serialNumber"] == "SN1234567"
        assert body["meter"] == 3.5
        assert body["photoUrl"].startswith(f"/storage/job-photos/{job_id}/2/")
        assert body["thumbUrl"].endswith("-thumb.jpg")

        stored = await client.get(body["thumbUrl"])
        assert stored.status_code == 200
        assert stored.content == jpeg(64, 48)


@pytest.mark.asyncio
async def test_json_upload_with_short_keys(job_id, jpeg):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post(
            "/api/job-photos/upload",
            json={
                "j": job_id,
                "c": "15",
                "dataUrl": _data_url(jpeg(), "image/png"),
                "thumbDataUrl": _data_url(jpeg(64, 48)),
                "token": "cap-1",
            },
        )

    assert response.status_code == 200
    body = response.json()
    assert body["categoryId"] == "15"
    assert body["photoUrl"].endswith(".png")
    assert body["thumbUrl"].endswith("-thumb.jpg")


@pytest.mark.asyncio
async def test_server_scores_sharpness_when_missing(job_id, jpeg):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await client.post(
            "/api/job-photos/upload",
            files={
                "photo": ("photo.jpg", jpeg(), "image/jpeg"),
                "thumb": ("thumb.jpg", jpeg(), "image/jpeg"),
            },
            data={"jobId": job_id, "categoryId": "1"},
        )
        await client.post(
            "/api/job-photos/upload",
            files={
                "photo": ("photo.jpg", jpeg(), "image/jpeg"),
                "thumb": ("thumb.jpg", jpeg(), "image/jpeg"),
            },
            data={"jobId": job_id, "categoryId": "1", "sharpness": "7.25"},
        )
        response = await client.get(f"/api/job-photos/{job_id}")

    photos = response.json()["items"][0]["photos"]
    assert photos[0]["sharpness"] > 0
    assert photos[1]["sharpness"] == 7.25


@pytest.mark.asyncio
async def test_missing_fields_rejected(job_id, jpeg):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post(
            "/api/job-photos/upload",
            files={"photo": ("photo.jpg", jpeg(), "image/jpeg")},
            data={"jobId": job_id, "categoryId": "2"},
        )

    assert response.status_code == 400
    assert response.json() == {"error": "photo, thumb, jobId, categoryId required"}


@pytest.mark.asyncio
async def test_json_missing_fields_rejected(job_id):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post("/api/job-photos/upload", json={"jobId": job_id})

    assert response.status_code == 400
    assert "dataUrl" in response.json()["error"]


@pytest.mark.asyncio
async def test_bad_data_url_rejected(job_id):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post(
            "/api/job-photos/upload",
            json={"jobId": job_id, "categoryId": "2", "dataUrl": "nope", "thumbDataUrl": "nope"},
        )

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid dataUrl"


@pytest.mark.asyncio
async def test_unsupported_content_type():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post(
            "/api/job-photos/upload",
            content=b"hello there",
            headers={"Content-Type": "text/plain"},
        )

    assert response.status_code == 415
    body = response.json()
    assert body["error"].startswith("Unsupported Content-Type")
    assert body["peek"] == "hello there"


@pytest.mark.asyncio
async def test_oversized_photo_rejected(job_id, jpeg, monkeypatch):
    monkeypatch.setattr(settings, "max_photo_size_bytes", 100)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post(
            "/api/job-photos/upload",
            files={
                "photo": ("photo.jpg", jpeg(), "image/jpeg"),
                "thumb": ("thumb.jpg", jpeg(), "image/jpeg"),
            },
            data={"jobId": job_id, "categoryId": "2"},
        )

    assert response.status_code == 413


@pytest.mark.asyncio
async def test_retried_upload_is_a_second_entry(job_id, jpeg):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        for _ in range(2):
            await client.post(
                "/api/job-photos/upload",
                files={
                    "photo": ("photo.jpg", jpeg(), "image/jpeg"),
                    "thumb": ("thumb.jpg", jpeg(64, 48), "image/jpeg"),
                },
                data={"jobId": job_id, "categoryId": "1", "token": "same-token"},
            )
        response = await client.get(f"/api/job-photos/{job_id}")

    item = response.json()["items"][0]
    assert len(item["photos"]) == 2
    assert item["selectedPhotoId"] == item["photos"][1]["id"]
