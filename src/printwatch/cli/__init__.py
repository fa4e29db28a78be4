from printwatch.cli.main import cli

__all__ = ["cli"]
