"""
Chaos 'actions' module.

This module contains *actions* that change the network partition state of a
set of hosts: block traffic between a pair of hosts, split hosts into two
groups that can not see each other, and remove every partition rule again.

*Actions* return True when every reachable host applied its rules and False
otherwise, so they can be used directly as chaostoolkit actions. Faults
encountered while executing an *action* are logged, not raised.
"""
