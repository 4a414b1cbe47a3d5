"""
chaospartition module

This module contains:
 - actions that partition or heal a set of hosts (actions directory)
 - probes that report the partition rules currently in place (probes
   directory)
 - the rule planner that turns a partition intent into iptables commands
   (rules.py)
 - an orchestrator that runs a plan on many hosts at once (orchestrator.py)
 - a remote execution tool built on Python Fabric and Paramiko that answers
   sudo password prompts (execute directory)
 - common enums, defaults and errors (common directory)
 - the chaos-partition command line (cli.py)

Every rule this module installs lives in a single iptables chain on each
host (chaospartition.common.DEFAULT_PARTITION_CHAIN unless overridden). The
chain is jumped to from INPUT and OUTPUT. Listing and resetting only ever
look at that chain, so rules installed by anything else are left alone.

Hosts are independent. A host that can not be reached is reported and
skipped; the other hosts still get their rules. A command that fails on a
reachable host makes the whole invocation fail, because a half applied
partition is worse than a loud error.

Things to consider when adding or modifying actions and/or probes:
1. Actions and Probes could/may be used outside of Chaos experiments for other
   kinds of integration or systems testing. Therefore, actions should
   be written in a way they can reused outside of the context of the
   the chaospartition module and the chaostoolkit.
2. The planner must stay free of I/O. Anything that talks to a host belongs
   in execute/ or orchestrator.py.
"""
