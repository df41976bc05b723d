import logging
from contextlib import contextmanager
from pathlib import Path

import click
import httpx

import pyuor
from pyuor.errors import (
    AuthenticationError,
    InvalidReference,
    KeychainError,
    LoadError,
    SigningError,
)
from pyuor.options import PullOptions, PushOptions


@contextmanager
def _errors():
    """Report library errors as a message and a non-zero exit status"""
    try:
        yield
    except httpx.HTTPStatusError as e:
        raise click.ClickException(
            f"registry returned {e.response.status_code} for {e.request.url}"
        ) from e
    except (
        LoadError,
        AuthenticationError,
        KeychainError,
        SigningError,
        InvalidReference,
        httpx.HTTPError,
        OSError,
        ValueError,
    ) as e:
        raise click.ClickException(str(e)) from e


def _print_nodes(collection: pyuor.Collection):
    for node in sorted(collection.nodes(), key=lambda n: n.id):
        print("\t".join([node.id, node.mediaType, str(node.size), node.title or ""]))


def _annotations(values: tuple[str, ...]) -> dict[str, str] | None:
    annotations = {}
    for value in values:
        key, sep, val = value.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {value!r}")
        annotations[key] = val
    return annotations or None


@click.group()
@click.option(
    "-l",
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default="info",
    help="Log verbosity",
)
@click.option(
    "-c",
    "--config",
    "configs",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Credential config file, may be repeated",
)
@click.option("--plain-http", help="Use http to talk to the registry", is_flag=True)
@click.option("--insecure", help="Skip TLS verification", is_flag=True)
@click.option("--timeout", type=float, default=None, help="Timeout in seconds")
@click.pass_context
def cli(ctx, log_level, configs, plain_http, insecure, timeout):
    logging.basicConfig(level=getattr(logging, log_level.upper()))
    ctx.obj = {
        "log_level": log_level,
        "configs": list(configs),
        "plain_http": plain_http,
        "insecure": insecure,
        "timeout": timeout,
    }


@cli.command()
@click.argument(
    "path", type=click.Path(exists=True, file_okay=False, path_type=Path)
)
@click.argument("destination")
@click.option("--sign", help="Sign the collection after pushing", is_flag=True)
@click.option(
    "-a", "--annotation", "annotations", multiple=True, help="KEY=VALUE"
)
@click.pass_obj
def push(obj, path: Path, destination: str, sign: bool, annotations):
    """Push a directory as a collection to the registry."""
    with _errors():
        options = PushOptions(destination=destination, sign=sign, **obj)
        collection = pyuor.artifact.push_collection(
            path, options, annotations=_annotations(annotations)
        )
    print(f"Pushed {len(collection)} nodes to {destination}")


@cli.command()
@click.argument("source")
@click.option(
    "-o",
    "--output",
    help="Output directory",
    default="out",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
)
@click.option("--verify", help="Verify the collection signature", is_flag=True)
@click.option("-w", "--workers", type=click.IntRange(min=1), default=1)
@click.pass_obj
def pull(obj, source: str, output: Path, verify: bool, workers: int):
    """Download the files of a collection from the registry."""
    with _errors():
        options = PullOptions(
            source=source, verify=verify, max_workers=workers, **obj
        )
        output.mkdir(parents=True, exist_ok=True)
        pyuor.artifact.pull_collection(options, output=output)
    print(f"Done downloading: {output}")


@cli.command()
@click.argument("source")
@click.option("--layout", help="SOURCE is an OCI image layout", is_flag=True)
@click.option("-w", "--workers", type=click.IntRange(min=1), default=1)
@click.pass_obj
def inspect(obj, source: str, layout: bool, workers: int):
    """List the nodes of a collection."""
    with _errors():
        if layout:
            collection = pyuor.artifact.load_layout(
                Path(source),
                ctx=pyuor.Context(timeout=obj["timeout"]),
                max_workers=workers,
            )
        else:
            options = PullOptions(source=source, max_workers=workers, **obj)
            collection = pyuor.artifact.inspect_collection(options)
    _print_nodes(collection)


if __name__ == "__main__":
    cli()
