#!/usr/bin/env python3
"""
DNS server reachability probe
"""
import logging

import dns.exception
import dns.resolver


logger = logging.getLogger(__name__)


def probe_server(server, name='.', rtype='NS', timeout=2.0):
    """
    Ask one DNS server a single question and report whether it answered.

    NXDOMAIN and NODATA both count as reachable: the server responded.

    Args:
        server (str): DNS server address (e.g. '9.9.9.9')
        name (str): name to query
        rtype (str): record type
        timeout (float): timeout in seconds

    Returns:
        bool: True when the server produced a DNS response
    """
    try:
        r = dns.resolver.Resolver(configure=False)
        r.nameservers = [server]
        r.timeout = timeout
        r.lifetime = timeout
        r.resolve(name, rtype)
        return True
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
        return True
    except dns.exception.DNSException as e:
        logger.debug("DNS probe failed (%s): %s", server, e)
        return False
    except ValueError as e:
        # not an IP address
        logger.warning("invalid DNS server address %r: %s", server, e)
        return False
