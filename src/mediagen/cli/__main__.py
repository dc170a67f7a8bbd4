"""CLI entry point for mediagen.cli module.

Enables execution via: python -m mediagen.cli
"""

from mediagen.cli.fail_stale_generations import main

if __name__ == "__main__":
    main()
