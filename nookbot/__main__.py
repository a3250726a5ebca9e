"""Entry point for running nookbot as a module: python -m nookbot"""

from nookbot.cli import app

if __name__ == "__main__":
    app()
