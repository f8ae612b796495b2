"""
holo-build CLI — Cross-distribution system package compiler.

Usage:
    holo-build build package.json --format rpm
    holo-build build package.json --format pacman --reproducible --stdout > foo.pkg.tar.xz
    holo-build build package.json -f pacman --materialize -C ./build
"""

import json
import logging

import click
from rich.console import Console
from rich.markup import escape


@click.group()
@click.version_option(package_name="holo-build")
def cli():
    """holo-build — Cross-distribution system package compiler."""
    pass


@cli.command()
@click.argument("package_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--format",
    "-f",
    "fmt",
    type=click.Choice(["pacman", "rpm"]),
    default="pacman",
    help="Package format to generate.",
)
@click.option("--stdout", "to_stdout", is_flag=True, help="Write the package to stdout instead of a file.")
@click.option("--reproducible", is_flag=True, help="Omit build dates, hosts and tool versions; zero all timestamps.")
@click.option(
    "--materialize",
    is_flag=True,
    help="Build pacman packages from a materialized directory with bsdtar.",
)
@click.option(
    "--work-dir",
    "-C",
    type=click.Path(file_okay=False),
    default=".",
    help="Directory for the build root and the package file.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
def build(package_file, fmt, to_stdout, reproducible, materialize, work_dir, verbose):
    """Build a package from a JSON package description."""
    from pathlib import Path

    from holo_build.core.build import PackageBuilder
    from holo_build.core.errors import HoloBuildError
    from holo_build.generators import get_generator
    from holo_build.models.package import Package

    # Configure logging
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    console = Console(stderr=True)

    try:
        with open(package_file, encoding="utf-8") as f:
            package = Package.from_dict(json.load(f))
    except (json.JSONDecodeError, KeyError, ValueError, HoloBuildError) as e:
        console.print(f"[bold red]Cannot read {escape(package_file)}:[/bold red] {escape(str(e))}")
        raise SystemExit(1) from e

    work_path = Path(work_dir)
    work_path.mkdir(parents=True, exist_ok=True)

    builder = PackageBuilder(get_generator(fmt, materialize=materialize), work_dir=work_path)
    try:
        path = builder.build(package, to_stdout=to_stdout, reproducible=reproducible)
    except (HoloBuildError, OSError) as e:
        console.print(f"[bold red]Build failed:[/bold red] {escape(str(e))}")
        raise SystemExit(1) from e

    if path is not None:
        console.print(f"[green]Built[/green] {escape(str(path))}")


if __name__ == "__main__":
    cli()
