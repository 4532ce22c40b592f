"""
Module entry point for: python -m quizconv

Allows running the converter directly as a module:
    python -m quizconv convert <input> --format qti12 [options]
    python -m quizconv inspect <input>
    python -m quizconv serve [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
