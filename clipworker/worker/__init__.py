"""
Worker module.
Contains the claim protocol, scheduler, retry state machine, heartbeat and
shutdown coordination.
"""
