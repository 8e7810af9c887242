"""
Tests for capability resolution and the user guard
"""

from hookcms.seeds import capability_tree
from hookcms.services.guard import UserGuard, expand_capabilities, load_inheritance_map


class TestExpandCapabilities:
    def test_closure_over_nested_inheritance(self):
        inheritance = {"manage_all": ["manage_posts"], "manage_posts": ["read_post", "edit_posts"]}

        resolved = expand_capabilities(["manage_all"], inheritance)

        assert resolved == {"manage_all", "manage_posts", "read_post", "edit_posts"}

    def test_cycles_terminate(self):
        inheritance = {"a": ["b"], "b": ["a"]}
        assert expand_capabilities(["a"], inheritance) == {"a", "b"}

    def test_no_inheritance(self):
        assert expand_capabilities(["read"], {}) == {"read"}


class TestUserGuard:
    async def test_seeded_inheritance_map(self, db):
        inheritance = await load_inheritance_map(db)
        assert set(inheritance["manage_posts"]) == set(capability_tree()["manage_posts"])

    async def test_guest_gets_guest_role_capabilities(self, db):
        guard = UserGuard(db, None)

        assert await guard.get_capabilities() == {"read"}
        assert await guard.user(can_one_of=["read"]) == ["read"]
        assert await guard.user(can_one_of=["create"]) is None

    async def test_administrator_has_everything(self, db, admin_user):
        guard = UserGuard(db, admin_user)
        caps = await guard.get_capabilities()

        assert {"read", "create", "update", "delete", "manage_plugins", "read_job"} <= caps

    async def test_user_role_has_nothing_by_default(self, db, basic_user):
        guard = UserGuard(db, basic_user)
        assert await guard.get_capabilities() == set()
        assert await guard.user(can_one_of=["read"]) is None

    async def test_mapping_spec_returns_canonical_names(self, db, admin_user):
        guard = UserGuard(db, admin_user)

        matched = await guard.user(can_one_of={"read": "read_post", "create": "create_posts", "bogus": "nope"})

        assert matched == ["read", "create"]

    async def test_can_all_of_requires_every_capability(self, db, admin_user):
        guard = UserGuard(db, admin_user)

        assert await guard.can_all_of(["read", "delete"]) == ["read", "delete"]
        assert await guard.can_all_of(["read", "does_not_exist"]) is None

    async def test_combined_checks(self, db, admin_user):
        guard = UserGuard(db, admin_user)

        matched = await guard.user(can_all_of=["read"], can_one_of=["missing", "update"])

        assert matched == ["read", "update"]

    async def test_empty_check_fails(self, db, admin_user):
        assert await UserGuard(db, admin_user).user() is None

    async def test_other_user_lookup(self, db, admin_user, basic_user):
        guard = UserGuard(db, basic_user)

        assert await guard.user(can_one_of=["read"]) is None
        assert await guard.user(can_one_of=["read"], user_id=admin_user.id) == ["read"]
