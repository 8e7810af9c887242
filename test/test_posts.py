"""
Tests for posts: the service, meta queries, hook points and the routes
"""

import json

import pytest

from hookcms.exceptions import ResourceNotFoundError, ValidationError
from hookcms.models.post import PostType
from hookcms.services.post_service import PostService, resolve_term_ids
from hookcms.services.term_service import TermService


@pytest.fixture
async def book_type(db):
    db.add(PostType(slug="book", name_singular="Book", name_plural="Books", show_in_menu=False))
    await db.commit()


@pytest.fixture
def service(db, hooks, book_type):
    return PostService(db, hooks)


async def add_books(service, admin_user):
    books = [
        {"title": "Red Dawn", "color": "red", "price": 10, "status": "publish"},
        {"title": "Blue Moon", "color": "blue", "price": 25, "status": "publish"},
        {"title": "Green Hills", "color": "green", "price": 40},
    ]
    return [await service.create_post("book", data, author_id=admin_user.id) for data in books]


class TestResolveTermIds:
    def test_mapping_of_ids_and_objects(self):
        assert resolve_term_ids({"genre": [1, {"id": 2}], "tag": ["3", 1]}) == [1, 2, 3]

    def test_flat_list_skips_empty_values(self):
        assert resolve_term_ids([4, None, "", {"id": None}]) == [4]


class TestPostService:
    async def test_create_flattens_meta_and_generates_slug(self, service, admin_user):
        post = await service.create_post("book", {"title": "Hello World", "isbn": "abc-123"}, author_id=admin_user.id)

        assert post["slug"] == "hello-world"
        assert post["status"] == "draft"
        assert post["title"] == "Hello World"
        assert post["isbn"] == "abc-123"
        assert post["authors"] == [{"id": admin_user.id, "username": "admin", "email": "admin@example.com"}]
        assert post["taxonomies"] == {}

    async def test_structured_meta_round_trips(self, service):
        post = await service.create_post("book", {"title": "Atlas", "dimensions": {"w": 2, "h": 3}, "tags": ["a"]})

        assert post["dimensions"] == {"h": 3, "w": 2}
        assert post["tags"] == ["a"]

    async def test_slugs_are_unique_per_post_type(self, service):
        first = await service.create_post("book", {"title": "Same"})
        second = await service.create_post("book", {"title": "Same"})

        assert (first["slug"], second["slug"]) == ("same", "same-2")

    async def test_get_by_id_or_slug(self, service):
        post = await service.create_post("book", {"title": "Dune"})

        assert (await service.get_post("book", str(post["id"])))["title"] == "Dune"
        assert (await service.get_post("book", "dune"))["id"] == post["id"]
        with pytest.raises(ResourceNotFoundError):
            await service.get_post("book", "missing")

    async def test_update_changes_meta_and_status(self, service):
        post = await service.create_post("book", {"title": "Draft"})

        updated = await service.update_post("book", post["id"], {"status": "publish", "title": "Final", "pages": 300})

        assert updated["status"] == "publish"
        assert updated["title"] == "Final"
        assert updated["pages"] == 300
        assert updated["slug"] == "draft"

    async def test_soft_delete_then_force(self, service):
        post = await service.create_post("book", {"title": "Temp"})

        trashed = await service.delete_post("book", post["id"])
        assert trashed["deleted_at"] is not None
        with pytest.raises(ResourceNotFoundError):
            await service.get_post("book", post["id"])
        assert (await service.get_post("book", post["id"], include_deleted=True))["id"] == post["id"]

        await service.delete_post("book", post["id"], force=True)
        with pytest.raises(ResourceNotFoundError):
            await service.get_post("book", post["id"], include_deleted=True)

    async def test_taxonomies_are_attached(self, db, service):
        term = await TermService(db).create_term("book", "genre", {"name": "Sci Fi"})

        post = await service.create_post("book", {"title": "Dune", "taxonomies": {"genre": [term["id"]]}})

        assert [t["slug"] for t in post["taxonomies"]["genre"]] == ["sci-fi"]
        cleared = await service.update_post("book", post["id"], {"taxonomies": {}})
        assert cleared["taxonomies"] == {}


class TestQueries:
    async def test_status_search_and_count(self, service, admin_user):
        await add_books(service, admin_user)

        published = await service.list_posts("book", status="publish")
        assert {post["title"] for post in published} == {"Red Dawn", "Blue Moon"}
        assert await service.get_post_count("book", status="publish") == 2
        assert [post["title"] for post in await service.list_posts("book", search="Moon")] == ["Blue Moon"]

    async def test_order_by_meta_field(self, service, admin_user):
        await add_books(service, admin_user)

        posts = await service.list_posts("book", order_by="title", order="asc")

        assert [post["title"] for post in posts] == ["Blue Moon", "Green Hills", "Red Dawn"]

    async def test_meta_query_and(self, service, admin_user):
        await add_books(service, admin_user)
        query = {
            "relation": "AND",
            "queries": [{"key": "price", "value": 20, "compare": ">="}, {"key": "color", "value": "blue"}],
        }

        assert [post["title"] for post in await service.list_posts("book", meta_query=query)] == ["Blue Moon"]

    async def test_meta_query_or_and_in(self, service, admin_user):
        await add_books(service, admin_user)
        query = {
            "relation": "OR",
            "queries": [{"key": "color", "value": "red"}, {"key": "price", "value": [40], "compare": "IN"}],
        }

        titles = {post["title"] for post in await service.list_posts("book", meta_query=query)}

        assert titles == {"Red Dawn", "Green Hills"}
        assert await service.get_post_count("book", meta_query=query) == 2

    async def test_meta_query_exists(self, service, admin_user):
        posts = await add_books(service, admin_user)
        await service.update_post("book", posts[0]["id"], {"featured": True})

        featured = await service.list_posts("book", meta_query={"queries": [{"key": "featured", "compare": "EXISTS"}]})
        others = await service.list_posts("book", meta_query={"queries": [{"key": "featured", "compare": "NOT EXISTS"}]})

        assert [post["title"] for post in featured] == ["Red Dawn"]
        assert {post["title"] for post in others} == {"Blue Moon", "Green Hills"}

    async def test_invalid_meta_query(self, service):
        with pytest.raises(ValidationError):
            await service.list_posts("book", meta_query={"relation": "XOR", "queries": []})
        with pytest.raises(ValidationError):
            await service.list_posts("book", meta_query={"queries": [{"key": "a", "compare": "~"}]})


class TestHookPoints:
    async def test_insert_post_data_filter(self, service, hooks):
        hooks.add_filter("insertPostData", lambda data, post_type, post_id: {**data, "title": data["title"].upper()})

        post = await service.create_post("book", {"title": "quiet"})

        assert post["title"] == "QUIET"

    async def test_insert_post_data_must_return_a_dict(self, service, hooks):
        hooks.add_filter("insertPostData", lambda data, post_type, post_id: None)

        with pytest.raises(ValidationError):
            await service.create_post("book", {"title": "x"})

    async def test_post_filter_shapes_output(self, service, hooks):
        hooks.add_filter("post", lambda post: {**post, "excerpt_len": len(post.get("title", ""))})

        post = await service.create_post("book", {"title": "Four"})

        assert post["excerpt_len"] == 4

    async def test_save_and_delete_actions(self, service, hooks):
        events = []
        hooks.add_action("savePost", lambda post, created: events.append(("save", post["title"], created)))
        hooks.add_action("deletePost", lambda post, force: events.append(("delete", post["title"], force)))

        post = await service.create_post("book", {"title": "Story"})
        await service.update_post("book", post["id"], {"title": "Story 2"})
        await service.delete_post("book", post["id"], force=True)

        assert events == [("save", "Story", True), ("save", "Story 2", False), ("delete", "Story 2", True)]


class TestPostRoutes:
    async def test_crud(self, client, admin_headers, book_type):
        response = await client.post("/api/v1/book", json={"title": "Dune", "status": "publish"}, headers=admin_headers)
        assert response.status_code == 201
        post = response.json()

        listing = await client.get("/api/v1/book", headers=admin_headers)
        assert listing.json()["total"] == 1
        assert listing.json()["items"][0]["slug"] == "dune"

        patched = await client.patch(f"/api/v1/book/{post['id']}", json={"subtitle": "Part one"}, headers=admin_headers)
        assert patched.json()["subtitle"] == "Part one"

        fetched = await client.get("/api/v1/book/dune", headers=admin_headers)
        assert fetched.json()["subtitle"] == "Part one"

        deleted = await client.delete(f"/api/v1/book/{post['id']}", headers=admin_headers)
        assert deleted.status_code == 200
        assert (await client.get("/api/v1/book/dune", headers=admin_headers)).status_code == 404

    async def test_meta_query_parameter(self, client, admin_headers, book_type):
        for color in ("red", "blue"):
            await client.post("/api/v1/book", json={"title": f"{color} book", "color": color}, headers=admin_headers)

        query = json.dumps({"queries": [{"key": "color", "value": "blue"}]})
        response = await client.get("/api/v1/book", params={"meta_query": query}, headers=admin_headers)

        assert [item["title"] for item in response.json()["items"]] == ["blue book"]

    async def test_malformed_meta_query(self, client, admin_headers, book_type):
        response = await client.get("/api/v1/book", params={"meta_query": "{nope"}, headers=admin_headers)
        assert response.status_code == 400

    async def test_unknown_post_type(self, client, admin_headers):
        response = await client.get("/api/v1/unknown", headers=admin_headers)
        assert response.status_code == 404

    async def test_global_capabilities_apply_without_a_mapping(self, client, user_headers, book_type):
        response = await client.post("/api/v1/book", json={"title": "Nope"}, headers=user_headers)
        assert response.status_code == 403

    async def test_hidden_post_type_is_forbidden_not_missing(self, client, db, user_headers):
        db.add(PostType(slug="ledger", capabilities={"read": "read_ledger"}, show_in_menu=False))
        await db.commit()

        hidden = await client.get("/api/v1/ledger", headers=user_headers)
        missing = await client.get("/api/v1/nothing-here", headers=user_headers)

        assert hidden.status_code == 403
        assert missing.status_code == 404

    async def test_post_type_capability_mapping(self, client, db, admin_headers, user_headers, basic_user):
        from hookcms.models.user import Capability, Role

        db.add(PostType(slug="note", capabilities={"read": "read_note", "create": "create_notes"}, show_in_menu=False))
        await db.commit()

        response = await client.post("/api/v1/note", json={"title": "Mine"}, headers=admin_headers)
        assert response.status_code == 403

        read_note = Capability(slug="read_note")
        db.add(read_note)
        role = Role(slug="reader", capabilities=[read_note])
        db.add(role)
        basic_user.roles = [*basic_user.roles, role]
        await db.commit()

        assert (await client.get("/api/v1/note", headers=user_headers)).status_code == 200
        assert (await client.post("/api/v1/note", json={"title": "x"}, headers=user_headers)).status_code == 403
