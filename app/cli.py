from __future__ import annotations

import click
from flask import Flask

from app.store import open_store
from passwords import hash_password
from utils import ApiError


def init_cli(app: Flask) -> None:
    @app.cli.command("init-db")
    def init_db_command():
        """Create tables (idempotent). The engine is initialized by create_app."""
        cfg = app.config["CFG"]
        if cfg.STORAGE_BACKEND != "sql":
            raise click.ClickException("init-db needs STORAGE_BACKEND=sql")
        click.echo(f"Database ready: {cfg.DATABASE_URL}")

    @app.cli.command("create-admin")
    @click.option("--organization", "organization", required=True, help="Organization name.")
    @click.option("--username", required=True)
    @click.option("--email", required=True)
    @click.option("--full-name", "full_name", default="")
    @click.password_option()
    def create_admin_command(organization: str, username: str, email: str, full_name: str, password: str):
        """Bootstrap an organization together with its first admin user."""
        try:
            password_hash = hash_password(password)
        except ApiError as e:
            raise click.ClickException(e.message)

        store = open_store()
        try:
            if store.get_user_by_username(username) or store.find_user_by_email(email):
                raise click.ClickException("Username or email already in use")
            org = store.create_organization({"name": organization})
            user = store.create_user(
                org["id"],
                {
                    "username": username,
                    "email": email,
                    "fullName": full_name,
                    "passwordHash": password_hash,
                    "role": "ADMIN",
                },
            )
            store.commit()
        except Exception:
            store.rollback()
            raise
        finally:
            store.close()
        click.echo(f"Created organization {org['id']} with admin user {user['id']} ({user['username']})")
