"""Shared-memory ring queues with message framing, a timeout queue, a thread shim, network device helpers and result codes."""

__version__ = "0.1.0"
__all__ = [
    "messaging_queue_pair",
    "nccl_status",
    "netdev",
    "spsc_queue_pair",
    "thread_shim",
    "timeout_queue",
]