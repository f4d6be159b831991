from pathlib import Path
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from roshnii.config import Settings
from roshnii.models import Image, User
from roshnii.services.image_service import ImageService, ImageValidationError
from roshnii.services.storage import BlobNotFoundError, LocalStorage, StorageError, init_storage
from tests._helpers import make_png

UPLOAD_URL = "/api/images/upload"


async def upload(client: AsyncClient, headers, filename="photo.png", content=None, content_type="image/png"):
    content = make_png() if content is None else content
    return await client.post(
        UPLOAD_URL,
        files={"file": (filename, content, content_type)},
        headers=headers,
    )


def stored_files(settings: Settings) -> list[Path]:
    return [p for p in Path(settings.local_storage_path).rglob("*") if p.is_file()]


class TestImageUpload:
    """Tests for uploading images."""

    @pytest.mark.asyncio
    async def test_upload_image(
        self,
        client: AsyncClient,
        settings: Settings,
        test_user: User,
        auth_cookies,
    ):
        response = await upload(client, auth_cookies)

        assert response.status_code == 201
        data = response.json()
        assert data["user_id"] == str(test_user.id)
        assert data["filename"] == "photo.png"
        assert data["content_type"] == "image/png"
        assert data["size"] == len(make_png())
        assert data["width"] == 4
        assert data["height"] == 3
        assert data["url"] == f"/api/images/{data['id']}/download"

        files = stored_files(settings)
        assert len(files) == 1
        assert files[0].parent.name == f"user_{test_user.id}"

    @pytest.mark.asyncio
    async def test_upload_requires_session(self, client: AsyncClient):
        client.cookies.clear()

        response = await upload(client, {})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_empty_file(self, client: AsyncClient, settings: Settings, auth_cookies):
        response = await upload(client, auth_cookies, content=b"")

        assert response.status_code == 400
        assert response.json() == {"error": "Uploaded file is empty"}
        assert stored_files(settings) == []

    @pytest.mark.asyncio
    async def test_unsupported_type(self, client: AsyncClient, settings: Settings, auth_cookies):
        response = await upload(
            client, auth_cookies, filename="notes.txt", content=b"hello", content_type="text/plain"
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Unsupported file type: text/plain"}
        assert stored_files(settings) == []

    @pytest.mark.asyncio
    async def test_oversize_file(self, client: AsyncClient, settings: Settings, auth_cookies):
        settings.max_upload_size_mb = 1

        response = await upload(client, auth_cookies, content=b"\x00" * (1024 * 1024 + 1))

        assert response.status_code == 400
        assert response.json() == {"error": "File size exceeds limit of 1 MB"}

    @pytest.mark.asyncio
    async def test_not_an_image(self, client: AsyncClient, settings: Settings, auth_cookies):
        response = await upload(client, auth_cookies, content=b"definitely not a png")

        assert response.status_code == 400
        assert response.json() == {"error": "Uploaded file is not a valid image"}
        assert stored_files(settings) == []

    @pytest.mark.asyncio
    async def test_blob_removed_when_metadata_save_fails(
        self,
        db_session: AsyncSession,
        test_user: User,
        tmp_path,
        monkeypatch,
    ):
        storage = LocalStorage(str(tmp_path / "blobs"))
        service = ImageService(db_session, storage)

        async def failing_flush(*args, **kwargs):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(db_session, "flush", failing_flush)

        with pytest.raises(SQLAlchemyError):
            await service.upload(test_user.id, "photo.png", make_png(), "image/png")

        assert [p for p in (tmp_path / "blobs").rglob("*") if p.is_file()] == []


class TestImageAccess:
    """Tests for listing, reading and deleting images."""

    @pytest.mark.asyncio
    async def test_list_only_own_images(
        self,
        client: AsyncClient,
        auth_cookies,
        other_auth_cookies,
    ):
        mine = (await upload(client, auth_cookies, filename="mine.png")).json()
        await upload(client, other_auth_cookies, filename="theirs.png")

        response = await client.get("/api/images", headers=auth_cookies)

        assert response.status_code == 200
        assert [img["id"] for img in response.json()] == [mine["id"]]

    @pytest.mark.asyncio
    async def test_get_image(self, client: AsyncClient, auth_cookies):
        created = (await upload(client, auth_cookies)).json()

        response = await client.get(f"/api/images/{created['id']}", headers=auth_cookies)

        assert response.status_code == 200
        assert response.json()["id"] == created["id"]

    @pytest.mark.asyncio
    async def test_other_users_image_is_not_found(
        self,
        client: AsyncClient,
        auth_cookies,
        other_auth_cookies,
    ):
        created = (await upload(client, auth_cookies)).json()

        get = await client.get(f"/api/images/{created['id']}", headers=other_auth_cookies)
        download = await client.get(
            f"/api/images/{created['id']}/download", headers=other_auth_cookies
        )
        delete = await client.delete(f"/api/images/{created['id']}", headers=other_auth_cookies)

        for response in (get, download, delete):
            assert response.status_code == 404
            assert response.json() == {"error": "Image not found"}

    @pytest.mark.asyncio
    async def test_unknown_image(self, client: AsyncClient, auth_cookies):
        response = await client.get(f"/api/images/{uuid4()}", headers=auth_cookies)

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_download_image(self, client: AsyncClient, auth_cookies):
        content = make_png(8, 8)
        created = (await upload(client, auth_cookies, filename="my photo.png", content=content)).json()

        response = await client.get(f"/api/images/{created['id']}/download", headers=auth_cookies)

        assert response.status_code == 200
        assert response.content == content
        assert response.headers["content-type"] == "image/png"
        assert response.headers["content-disposition"] == (
            "attachment; filename*=UTF-8''my%20photo.png"
        )

    @pytest.mark.asyncio
    async def test_download_missing_blob(
        self,
        client: AsyncClient,
        settings: Settings,
        auth_cookies,
    ):
        created = (await upload(client, auth_cookies)).json()
        for path in stored_files(settings):
            path.unlink()

        response = await client.get(f"/api/images/{created['id']}/download", headers=auth_cookies)

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_image(
        self,
        client: AsyncClient,
        settings: Settings,
        auth_cookies,
        db_session: AsyncSession,
    ):
        created = (await upload(client, auth_cookies)).json()

        response = await client.delete(f"/api/images/{created['id']}", headers=auth_cookies)

        assert response.status_code == 204
        assert stored_files(settings) == []
        result = await db_session.execute(select(Image))
        assert result.scalars().all() == []

        again = await client.get(f"/api/images/{created['id']}", headers=auth_cookies)
        assert again.status_code == 404


class TestValidateUpload:
    """Unit tests for upload validation."""

    def test_returns_dimensions(self, tmp_path):
        service = ImageService(None, LocalStorage(str(tmp_path)))

        assert service.validate_upload(make_png(10, 20), "image/png") == (10, 20)

    def test_size_checked_before_type(self, tmp_path):
        service = ImageService(None, LocalStorage(str(tmp_path)), max_upload_size=1024 * 1024)

        with pytest.raises(ImageValidationError, match="exceeds limit of 1 MB"):
            service.validate_upload(b"x" * (1024 * 1024 + 1), "text/plain")

    def test_missing_content_type(self, tmp_path):
        service = ImageService(None, LocalStorage(str(tmp_path)))

        with pytest.raises(ImageValidationError, match="Unsupported file type"):
            service.validate_upload(make_png(), None)


class TestLocalStorage:
    """Tests for the filesystem blob store."""

    def test_round_trip(self, tmp_path):
        storage = LocalStorage(str(tmp_path))
        user_id = uuid4()

        path = storage.upload("cat.png", user_id, b"meow", "image/png")

        assert path.startswith(f"user_{user_id}/")
        assert path.endswith("_cat.png")
        assert storage.download(path) == (b"meow", "image/png")
        assert storage.generate_url(path, expiry=None) is None

        storage.delete(path)
        with pytest.raises(BlobNotFoundError):
            storage.download(path)

    def test_client_directories_are_stripped(self, tmp_path):
        storage = LocalStorage(str(tmp_path))

        path = storage.upload("../../etc/passwd", uuid4(), b"x", "image/png")

        assert path.endswith("_passwd")
        assert (tmp_path / path).is_file()

    def test_rejects_paths_outside_base(self, tmp_path):
        storage = LocalStorage(str(tmp_path / "base"))

        with pytest.raises(StorageError):
            storage.download("../outside.png")

    def test_delete_missing_file_is_not_an_error(self, tmp_path):
        storage = LocalStorage(str(tmp_path))

        storage.delete("user_x/missing.png")

    def test_unknown_backend_falls_back_to_local(self, settings: Settings):
        settings.blob_storage_type = "s3"

        storage = init_storage(settings)

        assert isinstance(storage, LocalStorage)
        assert storage.base_path == Path(settings.local_storage_path)
