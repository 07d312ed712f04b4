"""Main module for running the care embeddings CLI."""

from care_embeddings.cli import app


def main():
    """Run the command line interface."""
    app()


if __name__ == "__main__":
    main()
