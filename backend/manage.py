from datetime import date
from lms import create_app
from flask.cli import with_appcontext
from flask_migrate import upgrade, migrate, init
import click

from utils.phases import advance_batch_phases

app = create_app()

@app.cli.command("db-init")
@with_appcontext
def db_init():
    """Initializes migrations directory"""
    init()

@app.cli.command("db-migrate")
@with_appcontext
def db_migrate():
    """Creates a new migration"""
    migrate()

@app.cli.command("db-upgrade")
@with_appcontext
def db_upgrade():
    """Applies migrations"""
    upgrade()

@app.cli.command("advance-batches")
@click.option("--date", "on_date", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help="Run as if today were this date (YYYY-MM-DD)")
@with_appcontext
def advance_batches(on_date):
    """Moves every batch whose current phase has ended into the next phase"""
    today = on_date.date() if on_date else date.today()
    moved = advance_batch_phases(today)
    for batch_id, previous, current in moved:
        click.echo(f"Batch {batch_id}: {previous} -> {current}")
    click.echo(f"{len(moved)} batch(es) advanced on {today.isoformat()}")

@app.cli.command("seed")
@with_appcontext
def seed():
    """Loads a demo organization"""
    from lms.seed import seed_demo_data
    org = seed_demo_data()
    click.echo(f"Seeded organization '{org.name}' (id={org.id})")
