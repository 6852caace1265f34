"""Bootstrap engine for stack-ordered provisioning.

Resolves a plugin's declared stack order against a provision manifest into
a plan of phases, then executes the phases in order with a barrier between
them and concurrent node operations inside each phase.
"""
