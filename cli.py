#!/usr/bin/env python3
"""CLI for the Realtor Listing Tracker."""

import logging
import sys
from datetime import date

import click

import db
import scheduler
from aggregator import AGE_BUCKET_DAYS, bucket_for, compute_stats
from store import StoreError, build_store
from views import SORT_OPTIONS, filter_listings, sort_listings


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def cli(verbose):
    """Realtor Listing Tracker"""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    db.init_db()


def _load_records():
    store = build_store(db.get_all_settings())
    try:
        return store.get_all_records()
    except StoreError as e:
        click.echo(f"Error reading listings: {e}")
        sys.exit(1)


@cli.command()
@click.option("--date", "cycle_date", default=None, help="Cycle date (YYYY-MM-DD), defaults to today")
def sync(cycle_date):
    """Scrape listings and reconcile them with the store."""
    result = scheduler.run_sync(cycle_date=cycle_date)
    if "error" in result:
        click.echo(f"Error: {result['error']}")
        sys.exit(1)

    click.echo(f"\nDone! Found: {result['found']}, New: {result['new']}, "
               f"Relisted: {result['relisted']}, Sold/delisted: {result['sold']}")
    if result["sold_detection_skipped"]:
        click.echo("Sold detection was skipped for this cycle.")


@cli.command()
def stats():
    """Show listing statistics."""
    records = _load_records()
    s = compute_stats(records, date.today())
    d = db.get_db_stats()

    click.echo("\nListing Statistics:")
    click.echo(f"  New today:           {s.new_today}")
    click.echo(f"  New last 7 days:     {s.new_last_7_days}")
    click.echo(f"  New last 7 weeks:    {s.new_last_7_weeks}")
    click.echo(f"  Sold today:          {s.sold_today}")
    click.echo(f"  Total active:        {s.total_active}")
    click.echo(f"  For sale / for rent: {s.sale_count} / {s.rent_count}")

    if d["last_run"]:
        run = d["last_run"]
        click.echo(f"\n  Last sync: {run['started_at']}")
        click.echo(f"    Found: {run['listings_found']}, New: {run['new_listings']}, "
                   f"Sold: {run['sold_listings']}, Degraded: {'yes' if run['degraded'] else 'no'}")


@cli.command()
@click.option("--limit", "-n", default=14, help="Number of days to show")
def history(limit):
    """Show daily new/sold/active counters."""
    store = build_store(db.get_all_settings())
    try:
        daily = store.get_daily_stats(limit)
    except StoreError as e:
        click.echo(f"Error reading daily stats: {e}")
        sys.exit(1)

    if not daily:
        click.echo("No history data available. Run 'sync' first.")
        return

    click.echo(f"\n{'Date':<12} {'New':>6} {'Sold':>6} {'Total':>8}")
    click.echo("-" * 35)
    for stat in daily:
        click.echo(f"{stat.date.isoformat():<12} {'+' + str(stat.new_listings):>6} "
                   f"{'-' + str(stat.sold_count):>6} {stat.total_active:>8,}")


def _print_listings(records, limit):
    click.echo(f"{'MLS':<12} {'Listed':<11} {'Price':>11} {'City':<16} {'Postal':<7} Address")
    click.echo("-" * 100)
    for r in records[:limit]:
        listed = r.listing_date.isoformat() if r.listing_date else ""
        click.echo(f"{r.key:<12} {listed:<11} ${r.price:>10,} {r.city[:15]:<16} "
                   f"{r.postal_code:<7} {r.street_address or r.address}")


@cli.command()
@click.option("--city", default=None, help="Exact city name")
@click.option("--postal", default=None, help="Postal code prefix")
@click.option("--sort", "sort_by", type=click.Choice(SORT_OPTIONS), default="date_desc")
@click.option("--all", "include_sold", is_flag=True, help="Include sold listings")
@click.option("--limit", "-n", default=50, help="Number of listings to show")
def listings(city, postal, sort_by, include_sold, limit):
    """List stored listings with filters."""
    records = _load_records()
    if not include_sold:
        records = [r for r in records if r.is_active]
    records = sort_listings(filter_listings(records, city=city, postal_prefix=postal), sort_by)
    click.echo(f"\n{len(records)} listings\n")
    _print_listings(records, limit)


@cli.command()
@click.option("--days", type=click.Choice([str(d) for d in AGE_BUCKET_DAYS]), default="30")
@click.option("--limit", "-n", default=50, help="Number of listings to show")
def aging(days, limit):
    """Show active listings on the market for at least N days, oldest first."""
    records = _load_records()
    bucket = bucket_for(compute_stats(records, date.today()), int(days))
    click.echo(f"\n{len(bucket)} active listings older than {days} days\n")
    _print_listings(bucket, limit)


@cli.command()
@click.option("--port", default=5000, help="Port to serve on")
@click.option("--reload/--no-reload", default=False)
def serve(port, reload):
    """Start the dashboard API."""
    import uvicorn
    click.echo(f"Starting dashboard API on http://localhost:{port}")
    uvicorn.run("app:app", port=port, reload=reload)


if __name__ == "__main__":
    cli()
