from surehub_exporter.cli import cli

cli()
