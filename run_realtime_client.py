"""Run the realtime voice client from a checkout."""

import asyncio

from rtvoice.main import main

if __name__ == "__main__":
    asyncio.run(main())
