from pg_migrate.cli import app

app()
