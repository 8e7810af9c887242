"""
Tests for file uploads, attachments and attachment URLs
"""

import io

import pytest
from starlette.datastructures import Headers, UploadFile

from hookcms.config import settings
from hookcms.exceptions import InvalidOperationError, ValidationError
from hookcms.models.post import PostType
from hookcms.services.post_service import PostService
from hookcms.services.upload_service import UploadService, safe_file_name


def upload(name, content=b"data", content_type="text/plain"):
    return UploadFile(file=io.BytesIO(content), filename=name, headers=Headers({"content-type": content_type}))


@pytest.fixture
async def book_type(db):
    db.add(PostType(slug="book", name_plural="Books", show_in_menu=False))
    await db.commit()


class TestSafeFileName:
    def test_whitespace_and_directories(self):
        assert safe_file_name("../my  summer photo.png") == "my_summer_photo.png"


class TestUploadService:
    async def test_files_become_attachments(self, hooks, context):
        [attachment] = await UploadService(hooks).store([upload("cover art.png", b"\x89PNG", "image/png")])

        stored = context.uploads_dir / attachment["path"]
        assert stored.read_bytes() == b"\x89PNG"
        assert attachment["filename"].endswith("-cover_art.png")
        assert (attachment["original_name"], attachment["mime_type"], attachment["size"]) == (
            "cover art.png",
            "image/png",
            4,
        )

        post = await PostService(hooks.db).get_post("attachments", attachment["attachment_id"])
        assert post["status"] == "inherit"
        assert post["file"]["path"] == attachment["path"]
        assert post["authors"][0]["username"] == "admin"

    async def test_field_upload_sets_the_post_field(self, hooks, book_type):
        posts = PostService(hooks.db, hooks)
        book = await posts.create_post("book", {"title": "Dune"})

        attachments = await UploadService(hooks).store([upload("a.txt"), upload("b.txt")], "book", "dune", "gallery")

        gallery = (await posts.get_post("book", book["id"]))["gallery"]
        assert [item["attachment_id"] for item in gallery] == [item["attachment_id"] for item in attachments]

    async def test_hook_points(self, hooks):
        seen = []
        hooks.add_filter("sanitize_file_name", lambda name: name.upper())
        hooks.add_filter("attachment_metadata", lambda meta: {**meta, "alt": "cover"})
        hooks.add_action("after_upload", lambda attachments, post: seen.append((len(attachments), post)))

        [attachment] = await UploadService(hooks).store([upload("x.txt")])

        assert (attachment["original_name"], attachment["alt"]) == ("X.TXT", "cover")
        assert seen == [(1, None)]

    async def test_pre_upload_can_abort(self, hooks, context):
        hooks.add_filter("pre_upload", lambda files: False)

        with pytest.raises(InvalidOperationError):
            await UploadService(hooks).store([upload("x.txt")])
        assert not context.uploads_dir.exists()

    async def test_limits(self, hooks, monkeypatch):
        monkeypatch.setattr(settings, "allowed_file_extensions", "png, .JPG")
        monkeypatch.setattr(settings, "max_file_size", 3)
        service = UploadService(hooks)

        assert settings.get_allowed_file_extensions() == ["png", "jpg"]
        with pytest.raises(ValidationError):
            await service.store([upload("notes.txt", b"1")])
        with pytest.raises(ValidationError):
            await service.store([upload("big.png", b"1234")])
        assert len(await service.store([upload("ok.jpg", b"123")])) == 1

    async def test_no_files(self, hooks):
        with pytest.raises(ValidationError):
            await UploadService(hooks).store([])

    async def test_attachment_url(self, hooks, monkeypatch):
        monkeypatch.setattr(settings, "app_url", "https://cms.example.com/")
        [attachment] = await UploadService(hooks).store([upload("cv.pdf")])

        url = await hooks.get_attachment_url(attachment["attachment_id"])

        assert url == f"https://cms.example.com/uploads/{attachment['path']}"
        assert await hooks.get_attachment_url(999) is None


class TestUploadRoutes:
    async def test_upload_and_attach(self, client, admin_headers, book_type):
        created = await client.post("/api/v1/book", json={"title": "Dune"}, headers=admin_headers)
        book_id = created.json()["id"]

        response = await client.post(
            f"/api/v1/book/upload/{book_id}/cover",
            files=[("files", ("cover.png", b"\x89PNG", "image/png"))],
            headers=admin_headers,
        )

        assert response.status_code == 200
        [attachment] = response.json()["attachments"]
        book = (await client.get(f"/api/v1/book/{book_id}", headers=admin_headers)).json()
        assert book["cover"][0]["attachment_id"] == attachment["attachment_id"]

    async def test_plain_upload(self, client, admin_headers):
        response = await client.post(
            "/api/v1/attachments/upload", files=[("files", ("a.txt", b"hi", "text/plain"))], headers=admin_headers
        )
        assert response.json()["attachments"][0]["size"] == 2

    async def test_basic_user_cannot_upload(self, client, user_headers):
        response = await client.post(
            "/api/v1/attachments/upload", files=[("files", ("a.txt", b"hi", "text/plain"))], headers=user_headers
        )
        assert response.status_code == 403
