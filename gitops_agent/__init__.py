"""GitOps agent that watches git repositories and dispatches actions on change.

The agent runs one poller per configured repository. Pollers detect new
commits touching watched paths and hand change events to a single control
loop, which runs the configured shell or webhook action and records the
outcome in a durable state file.
"""

__version__ = "0.2.0"
