"""Allow running the client with ``python -m corecast``."""

from corecast.cli import main

if __name__ == "__main__":
    main()
