"""Parser for standard single-host ping output."""

import re
from dataclasses import dataclass
from typing import Optional


@dataclass
class PingReply:
    """Summary of one ping run against one target."""

    target: Optional[str]
    packets_transmitted: int = 0
    packets_received: int = 0
    rtt_ms: Optional[float] = None

    @property
    def reachable(self) -> bool:
        return self.packets_received > 0


class PingParser:
    """Parser for ``ping -c N`` output (iputils and busybox)."""

    source_type: str = "ping"

    def parse(self, data: str) -> PingReply:
        reply = PingReply(target=None)
        if not data or not data.strip():
            return reply

        latencies = []
        for line in data.strip().splitlines():
            line_stripped = line.strip()

            # "PING 192.168.1.1 (192.168.1.1) 56(84) bytes of data."
            if line_stripped.startswith("PING"):
                ping_match = re.search(r"PING\s+(\S+)(?:\s+\(([^)]+)\))?", line_stripped)
                if ping_match:
                    reply.target = ping_match.group(2) or ping_match.group(1)

            # "64 bytes from 192.168.1.1: icmp_seq=1 ttl=64 time=1.23 ms"
            elif "bytes from" in line_stripped and "time=" in line_stripped:
                time_match = re.search(r"time=([0-9.]+)\s*ms", line_stripped)
                if time_match:
                    latencies.append(float(time_match.group(1)))

            # "1 packets transmitted, 1 received, 0% packet loss, time 0ms"
            elif "packets transmitted" in line_stripped.lower():
                transmitted_match = re.search(r"(\d+)\s+packets transmitted", line_stripped)
                if transmitted_match:
                    reply.packets_transmitted = int(transmitted_match.group(1))
                received_match = re.search(r"(\d+)\s+(?:packets\s+)?received", line_stripped)
                if received_match:
                    reply.packets_received = int(received_match.group(1))

        if latencies:
            reply.rtt_ms = sum(latencies) / len(latencies)
            # Statistics line can be missing when output is truncated
            reply.packets_received = max(reply.packets_received, len(latencies))
        return reply
