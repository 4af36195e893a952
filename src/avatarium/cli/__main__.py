"""CLI entry point for the avatarium.cli module.

Enables execution via: python -m avatarium.cli poll|sweep|retry JOB_ID
"""

from avatarium.cli.pipeline import main

if __name__ == "__main__":
    main()
