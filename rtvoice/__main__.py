"""Allow ``python -m rtvoice`` and the ``rtvoice`` console script."""

import asyncio

from .main import main


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nInterrupted.")


if __name__ == "__main__":
    run()
