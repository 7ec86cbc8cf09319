"""Allow `python -m shiori`."""
from shiori.cli.main import main

main()
