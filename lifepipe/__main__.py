"""Entry point for python -m lifepipe"""
from lifepipe.cli.commands import app

if __name__ == "__main__":
    app()
