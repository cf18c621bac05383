"""mDNS Ingress Reconciler (mdnsr).

Watches Kubernetes Ingresses annotated with ``mdnscontroller/enabled: "true"``
and advertises their rule hosts on the local network:
 - a reconciler turning add/update/delete notifications into host deltas
 - a supervisor running exactly one advertiser per hostname
 - pluggable advertisers (dns-sd, avahi-publish, python-zeroconf, dry-run)
 - a small status API and an SQLite event journal
"""

__version__ = "0.1.0"
