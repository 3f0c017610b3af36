"""
relay/ — Internal fan-out and the relay loops

relay.bus.Broadcast is the bounded, lossy, multi-subscriber bus both sides
of the bridge publish on; relay.orchestrator.Relay moves traffic between the
two buses and keeps the StateStore current.
"""
