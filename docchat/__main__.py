from docchat.main import cli

cli()
