import asyncio
import logging

from poolmon.config import PoolmonConfig
from poolmon.lifecycle.service import PoolmonService


async def main():
    config = PoolmonConfig(
        ports=[110, 143],
        ssl_ports=[993],
        timeout=3.0,
        interval=15.0,
        weight_file="examples/weights.txt",
    )
    service = PoolmonService(config)

    # One cycle against the local director, then print what happened
    service.load_weights()
    report = await service.run_once()
    if report.skipped:
        print("Director unavailable, cycle skipped")
        return
    print(f"Scanned {len(report.hosts)} hosts")
    print(f"Enabled: {report.enabled}")
    print(f"Disabled: {report.disabled}")
    print(f"Lost scans: {report.lost}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO,
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    asyncio.run(main())
