#!/usr/bin/env python3

import sys
import logging
import asyncio
import wiz_lights as wiz

logging.basicConfig(level=logging.DEBUG)

# IP addresses of lights to ask for push updates, e.g. "simple_listen.py 192.168.1.20"
light_ips = sys.argv[1:]

async def amain():
    # The WizPushListener context manager binds the push port and runs the receive loop. When the
    # context manager exits, the listener is stopped.
    async with wiz.WizPushListener() as listener:
        listener.register(lambda event: print(event))
        for ip in light_ips:
            await listener.register_device(ip)
        # This will wait forever; registrations expire unless they are renewed periodically
        while True:
            await asyncio.sleep(30.0)
            for ip in light_ips:
                await listener.register_device(ip)

loop = asyncio.new_event_loop()
try:
    asyncio.set_event_loop(loop)
    loop.run_until_complete(amain())
finally:
    loop.close()
