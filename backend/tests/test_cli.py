"""
CLI command tests (flask system / users / perms).
"""

from prodflow.models import Role, User, Permission


def _invoke(app, *args, **kwargs):
    return app.test_cli_runner().invoke(args=list(args), **kwargs)


class TestSystemInit:

    def test_init_seeds_catalog_roles_and_admin(self, app, db_session):
        result = _invoke(app, "system", "init")

        assert result.exit_code == 0, result.output
        assert "PASS Created superuser: admin" in result.output
        assert db_session.query(Permission).count() > 0
        assert {r.name for r in db_session.query(Role).all()} >= {"Admin", "Manager", "Warehouse", "Worker"}
        admin = db_session.query(User).filter_by(login="admin").one()
        assert admin.is_superuser

    def test_init_is_idempotent(self, app, db_session):
        _invoke(app, "system", "init")
        result = _invoke(app, "system", "init")

        assert result.exit_code == 0, result.output
        assert "already exists" in result.output
        assert db_session.query(User).count() == 1


class TestUsersCommands:

    def test_create_and_list(self, app, db_session, setup_roles):
        result = _invoke(
            app, "users", "create",
            "--login", "jan", "--email", "jan@prodflow.test", "--password", "Password123!",
            "--role", "Worker",
        )
        assert result.exit_code == 0, result.output
        assert "PASS Created user: jan" in result.output

        listing = _invoke(app, "users", "list")
        assert "jan@prodflow.test" in listing.output
        assert "Worker" in listing.output

    def test_unknown_role(self, app, db_session, setup_roles):
        result = _invoke(
            app, "users", "create",
            "--login", "jan", "--email", "jan@prodflow.test", "--password", "Password123!",
            "--role", "Astronaut",
        )
        assert "FAIL Role 'Astronaut' not found" in result.output
        assert db_session.query(User).count() == 0


class TestPermsCommands:

    def test_check_reports_effective_level(self, app, worker_user):
        has = _invoke(app, "perms", "check", "worker", "production.work")
        assert "HAS 'production.work'" in has.output

        lacks = _invoke(app, "perms", "check", "worker", "inventory.manage", "--level", "2")
        assert "DOES NOT HAVE" in lacks.output
        assert "Effective level: 0" in lacks.output

    def test_check_rejects_malformed_key(self, app, worker_user):
        result = _invoke(app, "perms", "check", "worker", "inventory")
        assert "must look like module.action" in result.output

    def test_list_for_role(self, app, setup_roles):
        result = _invoke(app, "perms", "list", "--role", "Worker")
        assert "production.work" in result.output

    def test_check_warns_on_unknown_key(self, app, worker_user):
        result = _invoke(app, "perms", "check", "worker", "robots.dance")
        assert "not in the permission catalog" in result.output
        assert "DOES NOT HAVE" in result.output
