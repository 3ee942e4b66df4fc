"""
Helper script run by openconnect (--script) on every tunnel state change.

openconnect passes the state in $reason and the tunnel settings as
environment variables. Those variables, and nothing else from the
environment, are forwarded to the daemon's notify endpoint for the provider
named in $OCNEXUS_PROVIDER.
"""

import os
import sys
from typing import Mapping, Optional

import httpx

# Sent before the tunnel device exists; nothing to report yet
SKIPPED_REASONS = ("pre-init",)
TIMEOUT = 10.0

# Variables set by openconnect for its script
TUNNEL_KEYS = ("reason", "VPNGATEWAY", "VPNPID", "TUNDEV", "IDLE_TIMEOUT", "LOG_LEVEL")
TUNNEL_PREFIXES = ("INTERNAL_IP4_", "INTERNAL_IP6_", "CISCO_")


def build_notify(environ: Mapping[str, str]) -> Optional[dict]:
    reason = environ.get("reason")
    if not reason:
        return None
    env = {
        key: value for key, value in environ.items()
        if key in TUNNEL_KEYS or key.startswith(TUNNEL_PREFIXES)
    }
    return {"reason": reason, "env": env}


def main(environ: Mapping[str, str] = os.environ) -> int:
    base_url = environ.get("OCNEXUS_NOTIFY_URL")
    provider = environ.get("OCNEXUS_PROVIDER")
    if not base_url or not provider:
        print("OCNEXUS_NOTIFY_URL and OCNEXUS_PROVIDER must be set", file=sys.stderr)
        return 1

    payload = build_notify(environ)
    if payload is None:
        print("reason not set; not called by openconnect?", file=sys.stderr)
        return 1

    if payload["reason"] in SKIPPED_REASONS:
        return 0

    url = f"{base_url.rstrip('/')}/providers/{provider}/notify"
    try:
        response = httpx.post(url, json=payload, timeout=TIMEOUT)
        response.raise_for_status()
    except httpx.HTTPError as e:
        print(f"Notify to {url} failed: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
