"""
Chaos 'probes' module.

*Probes* gather the partition state of hosts without changing it.
"""
