"""Entry point for the ``minibeast`` command."""

import click

from minibeast import __version__
from minibeast.cli.commands.module import clear, status
from minibeast.cli.commands.serve import serve


@click.group()
@click.version_option(version=__version__, prog_name="minibeast")
def main() -> None:
    """MiniBeast data deployer.

    Provision AWS resources for uploaded validator images and inspect
    what has been deployed.
    """


main.add_command(serve)
main.add_command(status)
main.add_command(clear)


if __name__ == "__main__":  # pragma: no cover
    main()
