"""
Tests for the plugin and theme system: loading, lifecycle, upgrades,
migrations, archives and the HTTP surface
"""

import io
import json
import os
import zipfile

import pytest
from sqlalchemy import text

from hookcms.exceptions import ExtensionError, ValidationError
from hookcms.extensions.archive import extract_archive, find_slug
from hookcms.extensions.loader import PLUGINS, THEMES
from hookcms.hooks import Hooks
from hookcms.services.extension_lifecycle import version_key
from hookcms.services.options_service import OptionsService
from hookcms.services.plugin_lifecycle_service import PluginLifecycleService
from hookcms.services.plugin_migration_service import PluginMigrationService
from hookcms.services.theme_lifecycle_service import ThemeLifecycleService

EXTENSION_SOURCE = '''
from hookcms.extensions.base import PluginBase

FAIL_ON = {fail_on!r}


class Extension(PluginBase):
    def _record(self, name, event):
        if name == FAIL_ON:
            raise RuntimeError(name + " failed")
        self.hooks.context.events.append((event["slug"], name, event))

    async def init(self):
        self.hooks.add_filter("siteName", lambda value: value + " + {slug}")

    async def on_install(self, event):
        self._record("install", event)

    async def on_activate(self, event):
        self._record("activate", event)

    def on_deactivate(self, event):
        self._record("deactivate", event)

    async def on_uninstall(self, event):
        self._record("uninstall", event)

    async def on_upgrade(self, event):
        self._record("upgrade", event)

    async def on_downgrade(self, event):
        self._record("downgrade", event)


def setup(hooks):
    return Extension(hooks)
'''

CREATE_TABLE = '''
from sqlalchemy import text


def up(connection):
    connection.execute(text("CREATE TABLE {table} (id INTEGER PRIMARY KEY)"))


def down(connection):
    connection.execute(text("DROP TABLE {table}"))
'''


def write_extension(base, slug, kind=PLUGINS, version="1.0.0", dependencies=(), fail_on=None, source=None):
    path = base / slug
    path.mkdir(parents=True, exist_ok=True)
    manifest = "plugin.json" if kind == PLUGINS else "theme.json"
    (path / manifest).write_text(
        json.dumps({"name": slug.title(), "version": version, "dependencies": list(dependencies)})
    )
    (path / "__init__.py").write_text(source or EXTENSION_SOURCE.format(fail_on=fail_on, slug=slug))
    return path


def write_migration(extension_path, name, table):
    migrations = extension_path / "migrations"
    migrations.mkdir(exist_ok=True)
    (migrations / name).write_text(CREATE_TABLE.format(table=table))


def zip_extension(path):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for file in path.rglob("*"):
            if file.is_file():
                archive.write(file, f"{path.name}/{file.relative_to(path).as_posix()}")
    return buffer.getvalue()


@pytest.fixture
def events(context):
    context.events = []
    return context.events


@pytest.fixture
def plugins_dir(content_dir):
    return content_dir / PLUGINS


@pytest.fixture
def themes_dir(content_dir):
    return content_dir / THEMES


@pytest.fixture
def plugins(db, context, hooks):
    return PluginLifecycleService(db, context, hooks)


@pytest.fixture
def themes(db, context, hooks):
    return ThemeLifecycleService(db, context, hooks)


def names(events):
    return [(slug, name) for slug, name, _ in events]


class TestVersionKey:
    def test_numeric_comparison(self):
        assert version_key("1.10.0") > version_key("1.9.3")
        assert version_key("2.0.0-beta") == (2, 0, 0)
        assert version_key("1.x") == (1, 0)


class TestLoader:
    def test_discovery_and_metadata(self, context, plugins_dir):
        write_extension(plugins_dir, "alpha", version="1.2.0", dependencies=["beta"])
        (plugins_dir / ".backups").mkdir()
        (plugins_dir / "not-a-plugin").mkdir()

        loader = context.extensions
        meta = loader.get_metadata(PLUGINS, "alpha")

        assert loader.list_slugs(PLUGINS) == ["alpha", "not-a-plugin"]
        assert loader.exists(PLUGINS, "alpha")
        assert not loader.exists(PLUGINS, "not-a-plugin")
        assert (meta.name, meta.version, meta.dependencies) == ("Alpha", "1.2.0", ["beta"])

    def test_module_is_cached_until_files_change(self, context, plugins_dir):
        path = write_extension(plugins_dir, "alpha")
        loader = context.extensions

        first = loader.import_module(PLUGINS, "alpha")
        assert loader.import_module(PLUGINS, "alpha") is first

        entry = path / "__init__.py"
        entry.write_text(entry.read_text() + "\nRELOADED = True\n")
        stat = entry.stat()
        os.utime(entry, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))

        reloaded = loader.import_module(PLUGINS, "alpha")
        assert reloaded is not first
        assert reloaded.RELOADED is True

    async def test_setup_is_required(self, context, plugins_dir):
        write_extension(plugins_dir, "nosetup", source="VALUE = 1\n")

        with pytest.raises(AttributeError):
            await context.extensions.instantiate(PLUGINS, "nosetup", None)

    async def test_missing_extension_hook_is_skipped(self, context):
        assert await context.extensions.call_lifecycle_hook(PLUGINS, "ghost", "on_activate") is False

    async def test_active_extensions_boot_with_the_hooks(self, db, context, admin_user, plugins_dir, themes_dir, events):
        write_extension(plugins_dir, "alpha")
        write_extension(themes_dir, "plain", kind=THEMES)
        await OptionsService.set_active_plugins(db, ["alpha", "ghost"])
        await OptionsService.set_option(db, "theme", "plain")

        hooks = await Hooks(context, db, admin_user).init()

        assert list(hooks.plugins) == ["alpha"]
        assert list(hooks.themes) == ["plain"]
        assert await hooks.apply_filters("siteName", "Site") == "Site + plain + alpha"
        assert names(events) == [("plain", "activate"), ("alpha", "activate")]
        assert events[0][2]["is_startup"] is True

        await Hooks(context, db, admin_user).init()
        assert len(events) == 2

    async def test_broken_extension_is_skipped(self, db, context, admin_user, plugins_dir, events):
        write_extension(plugins_dir, "broken", source="raise RuntimeError('boom')\n")
        write_extension(plugins_dir, "alpha")
        await OptionsService.set_active_plugins(db, ["broken", "alpha"])

        hooks = await Hooks(context, db, admin_user).init()

        assert list(hooks.plugins) == ["alpha"]


class TestPluginLifecycle:
    async def test_install_runs_migrations_and_hook(self, db, plugins, plugins_dir, events):
        path = write_extension(plugins_dir, "alpha")
        write_migration(path, "20240101000000_create_books.py", "alpha_books")

        state = await plugins.on_install("alpha")

        assert state["status"] == "installed"
        assert names(events) == [("alpha", "install")]
        assert (await db.execute(text("SELECT COUNT(*) FROM alpha_books"))).scalar() == 0
        assert (await plugins.get_state("alpha"))["status"] == "installed"

    async def test_activation_checks_dependencies(self, db, plugins, plugins_dir, events):
        write_extension(plugins_dir, "alpha")
        write_extension(plugins_dir, "beta", dependencies=["alpha"])

        assert await plugins.check_dependencies("beta") == {"satisfied": False, "missing": ["alpha"]}
        with pytest.raises(ExtensionError, match="Missing dependencies: alpha"):
            await plugins.on_activate("beta")

        await plugins.on_activate("alpha")
        await plugins.on_activate("beta")

        assert await OptionsService.get_active_plugins(db) == ["alpha", "beta"]
        assert names(events) == [("alpha", "activate"), ("beta", "activate")]

    async def test_deactivation_is_blocked_by_active_dependents(self, db, plugins, plugins_dir, events):
        write_extension(plugins_dir, "alpha")
        write_extension(plugins_dir, "beta", dependencies=["alpha"])
        await plugins.on_activate("alpha")
        await plugins.on_activate("beta")

        assert plugins.get_dependent_plugins("alpha") == ["beta"]
        with pytest.raises(ExtensionError, match="beta"):
            await plugins.on_deactivate("alpha")

        await plugins.on_deactivate("beta")
        state = await plugins.on_deactivate("alpha")

        assert state["status"] == "inactive"
        assert await OptionsService.get_active_plugins(db) == []

    async def test_deactivation_tears_down_scheduled_tasks(self, context, plugins, plugins_dir, events):
        write_extension(plugins_dir, "alpha")
        await plugins.on_activate("alpha")
        context.scheduler.call(lambda: None, name="alpha.sync", owner="alpha").hourly()

        await plugins.on_deactivate("alpha")

        assert context.scheduler.get_tasks_by_owner("alpha") == []

    async def test_uninstall(self, db, plugins, plugins_dir, events):
        path = write_extension(plugins_dir, "alpha")
        write_migration(path, "20240101000000_create_books.py", "alpha_books")
        await plugins.on_install("alpha")
        await plugins.on_activate("alpha")

        with pytest.raises(ExtensionError, match="deactivate it first"):
            await plugins.on_uninstall("alpha")

        await plugins.on_deactivate("alpha")
        await plugins.on_uninstall("alpha")

        assert await plugins.get_state("alpha") == {}
        assert await plugins.migrations.get_ran_migrations("alpha") == []
        assert names(events)[-1] == ("alpha", "uninstall")

    async def test_hook_errors_propagate(self, plugins, plugins_dir, events):
        write_extension(plugins_dir, "alpha", fail_on="activate")

        with pytest.raises(RuntimeError, match="activate failed"):
            await plugins.on_activate("alpha")


class TestVersionChanges:
    async def test_upgrade_from_new_files(self, plugins, plugins_dir, tmp_path, events):
        write_extension(plugins_dir, "alpha", version="1.0.0")
        await plugins.on_install("alpha")
        incoming = write_extension(tmp_path / "incoming", "alpha", version="2.0.0")

        state = await plugins.install_from("alpha", incoming)

        assert plugins.get_metadata("alpha").version == "2.0.0"
        assert (state["version"], state["previous_version"]) == ("2.0.0", "1.0.0")
        upgrade = events[-1]
        assert upgrade[1] == "upgrade"
        assert (upgrade[2]["old_version"], upgrade[2]["new_version"]) == ("1.0.0", "2.0.0")

    async def test_older_files_downgrade(self, plugins, plugins_dir, tmp_path, events):
        write_extension(plugins_dir, "alpha", version="1.5.0")
        incoming = write_extension(tmp_path / "incoming", "alpha", version="1.4.9")

        state = await plugins.install_from("alpha", incoming)

        assert names(events) == [("alpha", "downgrade")]
        assert "downgraded_at" in state

    async def test_failed_upgrade_restores_backup(self, plugins, plugins_dir, tmp_path, events):
        write_extension(plugins_dir, "alpha", version="1.0.0")
        incoming = write_extension(tmp_path / "incoming", "alpha", version="2.0.0", fail_on="upgrade")

        with pytest.raises(RuntimeError):
            await plugins.install_from("alpha", incoming)

        assert plugins.get_metadata("alpha").version == "1.0.0"

    async def test_failed_install_removes_files(self, plugins, plugins_dir, tmp_path, events):
        incoming = write_extension(tmp_path / "incoming", "alpha", fail_on="install")

        with pytest.raises(RuntimeError):
            await plugins.install_from("alpha", incoming)

        assert not (plugins_dir / "alpha").exists()

    async def test_versions_come_from_backups(self, plugins, plugins_dir, tmp_path, events):
        write_extension(plugins_dir, "alpha", version="1.0.0")
        await plugins.install_from("alpha", write_extension(tmp_path / "incoming", "alpha", version="2.0.0"))

        assert plugins.list_versions("alpha") == {
            "current_version": "2.0.0",
            "latest_version": "2.0.0",
            "all_versions": ["2.0.0", "1.0.0"],
            "newer_versions": [],
            "older_versions": ["1.0.0"],
        }

    async def test_change_version_round_trips_an_active_plugin(self, db, plugins, plugins_dir, tmp_path, events):
        write_extension(plugins_dir, "alpha", version="1.0.0")
        await plugins.install_from("alpha", write_extension(tmp_path / "incoming", "alpha", version="2.0.0"))
        await plugins.on_activate("alpha")
        events.clear()

        state = await plugins.change_version("alpha", "1.0.0")

        assert plugins.get_metadata("alpha").version == "1.0.0"
        assert names(events) == [("alpha", "deactivate"), ("alpha", "downgrade"), ("alpha", "activate")]
        assert state["status"] == "active"
        assert "alpha" in await OptionsService.get_active_plugins(db)
        assert plugins.list_versions("alpha")["newer_versions"] == ["2.0.0"]

    async def test_change_to_unknown_version(self, plugins, plugins_dir):
        write_extension(plugins_dir, "alpha", version="1.0.0")

        with pytest.raises(ExtensionError):
            await plugins.change_version("alpha", "9.9.9")

    async def test_old_backups_are_pruned(self, plugins, plugins_dir):
        write_extension(plugins_dir, "alpha")
        backups = plugins_dir / ".backups"
        backups.mkdir()
        for stamp in range(7):
            (backups / f"alpha_{1000 + stamp}").mkdir()

        removed = plugins.cleanup_backups("alpha", keep=5)

        assert sorted(path.name for path in removed) == ["alpha_1000", "alpha_1001"]
        assert len(list(backups.iterdir())) == 5


class TestMigrations:
    async def test_batches_rollback_and_reset(self, db, plugins_dir):
        path = write_extension(plugins_dir, "alpha")
        write_migration(path, "20240101000000_create_books.py", "alpha_books")
        write_migration(path, "20240102000000_create_authors.py", "alpha_authors")
        (path / "migrations" / "notes.txt").write_text("ignored")
        service = PluginMigrationService(db, plugins_dir)

        first = await service.run_migrations("alpha")
        assert first["migrations"] == ["20240101000000_create_books.py", "20240102000000_create_authors.py"]

        write_migration(path, "20240103000000_create_reviews.py", "alpha_reviews")
        await service.run_migrations("alpha")
        status = {item["name"]: item["batch"] for item in await service.get_status("alpha")}
        assert list(status.values()) == [1, 1, 2]

        rolled = await service.rollback("alpha")
        assert rolled["migrations"] == ["20240103000000_create_reviews.py"]

        reset = await service.reset("alpha")
        assert reset["migrations"] == ["20240102000000_create_authors.py", "20240101000000_create_books.py"]
        assert all(not item["ran"] for item in await service.get_status("alpha"))

    async def test_failure_stops_the_batch(self, db, plugins_dir):
        path = write_extension(plugins_dir, "alpha")
        (path / "migrations").mkdir()
        (path / "migrations" / "20240101000000_broken.py").write_text("def up(connection):\n    raise ValueError('bad')\n")
        write_migration(path, "20240102000000_create_books.py", "alpha_books")

        result = await PluginMigrationService(db, plugins_dir).run_migrations("alpha")

        assert result["success"] is False
        assert result["migrations"] == []
        assert "bad" in result["errors"][0]

    async def test_lifecycle_raises_on_failed_migration(self, plugins, plugins_dir):
        path = write_extension(plugins_dir, "alpha")
        (path / "migrations").mkdir()
        (path / "migrations" / "20240101000000_broken.py").write_text("def up(connection):\n    raise ValueError('bad')\n")

        with pytest.raises(ExtensionError, match="Migration failed"):
            await plugins.run_migrations("alpha")


class TestThemeLifecycle:
    async def test_only_one_theme_is_active(self, themes, themes_dir, events):
        write_extension(themes_dir, "light", kind=THEMES)
        write_extension(themes_dir, "dark", kind=THEMES)

        await themes.on_activate("light")
        await themes.on_activate("dark")

        assert await themes.get_active_theme() == "dark"
        assert names(events) == [("light", "activate"), ("light", "deactivate"), ("dark", "activate")]
        assert events[-1][2]["previous_theme"] == "light"

    async def test_active_theme_cannot_be_uninstalled(self, themes, themes_dir, events):
        write_extension(themes_dir, "light", kind=THEMES)
        await themes.on_activate("light")

        with pytest.raises(ExtensionError):
            await themes.on_uninstall("light")

    def test_validation(self, themes, themes_dir):
        (themes_dir / "empty").mkdir()
        write_extension(themes_dir, "light", kind=THEMES)

        assert themes.validate_theme("light") == {"valid": True, "errors": [], "warnings": []}
        result = themes.validate_theme("empty")
        assert result["valid"] is False
        assert result["errors"] == ["Missing __init__.py file"]
        assert themes.validate_theme("missing")["errors"] == ["Theme directory does not exist"]

    async def test_invalid_theme_is_not_activated(self, themes, themes_dir):
        (themes_dir / "empty").mkdir()

        with pytest.raises(ExtensionError, match="Invalid theme"):
            await themes.on_activate("empty")


class TestArchives:
    def test_find_slug(self):
        assert find_slug(["alpha/", "alpha/plugin.json", "alpha/__init__.py"]) == "alpha"

    def test_entry_point_must_be_in_the_top_folder(self):
        with pytest.raises(ValidationError):
            find_slug(["alpha/src/__init__.py"])

    def test_extracts_into_destination(self, tmp_path, plugins_dir):
        data = zip_extension(write_extension(plugins_dir, "alpha"))

        slug, folder = extract_archive(data, tmp_path / "out")

        assert slug == "alpha"
        assert (folder / "__init__.py").exists()

    def test_path_traversal_is_rejected(self, tmp_path):
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            archive.writestr("evil/__init__.py", "")
            archive.writestr("evil/../../escape.py", "")

        with pytest.raises(ValidationError, match="path traversal"):
            extract_archive(buffer.getvalue(), tmp_path / "out")

    def test_not_a_zip(self, tmp_path):
        with pytest.raises(ValidationError):
            extract_archive(b"plain text", tmp_path)


class TestExtensionRoutes:
    async def test_plugin_upload_activate_and_delete(self, client, admin_headers, tmp_path, plugins_dir, events):
        data = zip_extension(write_extension(tmp_path / "build", "gamma", version="1.0.0"))

        response = await client.post(
            "/api/v1/plugins/upload", files={"file": ("gamma.zip", data, "application/zip")}, headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["message"] == "Plugin uploaded successfully"

        listing = (await client.get("/api/v1/plugins/", headers=admin_headers)).json()
        assert [(item["slug"], item["active"], item["state"]["status"]) for item in listing] == [
            ("gamma", False, "installed")
        ]

        assert (await client.post("/api/v1/plugins/gamma/activate", headers=admin_headers)).status_code == 200
        assert (await client.delete("/api/v1/plugins/gamma", headers=admin_headers)).status_code == 400

        assert (await client.post("/api/v1/plugins/gamma/deactivate", headers=admin_headers)).status_code == 200
        assert (await client.delete("/api/v1/plugins/gamma", headers=admin_headers)).status_code == 200
        assert not (plugins_dir / "gamma").exists()
        assert names(events) == [("gamma", "install"), ("gamma", "activate"), ("gamma", "deactivate"), ("gamma", "uninstall")]

    async def test_reupload_upgrades(self, client, admin_headers, tmp_path, events):
        for version in ("1.0.0", "1.1.0"):
            data = zip_extension(write_extension(tmp_path / version, "gamma", version=version))
            response = await client.post(
                "/api/v1/plugins/upload", files={"file": ("gamma.zip", data, "application/zip")}, headers=admin_headers
            )

        assert response.json()["message"] == "Plugin updated successfully"
        assert response.json()["plugin"]["version"] == "1.1.0"

    async def test_bad_archive(self, client, admin_headers):
        response = await client.post(
            "/api/v1/plugins/upload", files={"file": ("x.zip", b"nope", "application/zip")}, headers=admin_headers
        )
        assert response.status_code == 400

    async def test_unknown_plugin(self, client, admin_headers):
        assert (await client.get("/api/v1/plugins/ghost", headers=admin_headers)).status_code == 404

    async def test_basic_user_sees_no_plugins(self, client, user_headers, plugins_dir):
        write_extension(plugins_dir, "alpha")

        assert (await client.get("/api/v1/plugins/", headers=user_headers)).json() == []
        response = await client.post("/api/v1/plugins/alpha/activate", headers=user_headers)
        assert response.status_code == 403

    async def test_theme_switching(self, client, admin_headers, themes_dir, events):
        write_extension(themes_dir, "light", kind=THEMES)
        write_extension(themes_dir, "dark", kind=THEMES)

        await client.post("/api/v1/themes/light/activate", headers=admin_headers)
        await client.post("/api/v1/themes/dark/activate", headers=admin_headers)

        listing = (await client.get("/api/v1/themes/", headers=admin_headers)).json()
        assert {item["slug"]: item["active"] for item in listing} == {"dark": True, "light": False}

    async def test_deactivate_active_theme(self, client, admin_headers, themes, themes_dir, events):
        write_extension(themes_dir, "light", kind=THEMES)
        await client.post("/api/v1/themes/light/activate", headers=admin_headers)

        response = await client.post("/api/v1/themes/deactivate", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["theme"] == "light"
        assert await themes.get_active_theme() is None
        again = await client.post("/api/v1/themes/deactivate", headers=admin_headers)
        assert again.json()["theme"] is None

    async def test_theme_versions_and_change_version(self, client, admin_headers, tmp_path, themes, events):
        for version in ("1.0.0", "1.1.0"):
            data = zip_extension(write_extension(tmp_path / version, "light", kind=THEMES, version=version))
            await client.post(
                "/api/v1/themes/upload", files={"file": ("light.zip", data, "application/zip")}, headers=admin_headers
            )

        versions = (await client.get("/api/v1/themes/light/versions", headers=admin_headers)).json()
        assert (versions["current_version"], versions["older_versions"]) == ("1.1.0", ["1.0.0"])

        response = await client.post(
            "/api/v1/themes/light/change-version", json={"version": "1.0.0"}, headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["theme"]["version"] == "1.0.0"

        missing = await client.post(
            "/api/v1/themes/light/change-version", json={"version": "3.0.0"}, headers=admin_headers
        )
        assert missing.status_code == 400
