#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Constants used by this package"""

WIZ_COMMAND_PORT = 38899
"""The UDP port on which fixtures accept command requests (and discovery broadcasts)."""

WIZ_PUSH_PORT = 38900
"""The UDP port to which registered fixtures send unsolicited syncPilot updates."""

WIZ_BROADCAST_ADDRESS = "255.255.255.255"
"""The broadcast address used for discovery."""

DEFAULT_ATTEMPT_TIMEOUT = 1.0
"""How long (in seconds) a single request attempt waits for a reply."""

DEFAULT_RETRY_DELAYS = (0.75, 1.5, 3.0)
"""The backoff delays (in seconds) inserted before each retry. The number of entries is the
   number of retries after the initial attempt."""

DEFAULT_DISCOVERY_WINDOW = 5.0
"""The default amount of time (in seconds) to collect discovery replies."""

DEFAULT_PUSH_POLL_INTERVAL = 1.0
"""Upper bound (in seconds) on a single receive wait inside the push listener loop."""

MAX_QUEUE_SIZE = 1000
"""Maximum number of received datagrams buffered per socket before new ones are dropped."""

DISCOVERY_PHONE_MAC = "AAAAAAAAAAAA"
"""Placeholder client MAC sent in discovery registration broadcasts."""

DISCOVERY_PHONE_IP = "1.2.3.4"
"""Placeholder client IP sent in discovery registration broadcasts."""
