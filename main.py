import asyncio
from core import Runner
from utils import setup_logging

setup_logging()

async def main():
    runner = Runner()
    await runner.start()

if __name__ == '__main__':
    asyncio.run(main())
