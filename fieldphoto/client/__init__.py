from fieldphoto.client.queue import EncodedPart, LocalDurableQueue, QueuedUpload
from fieldphoto.client.connectivity import ConnectivityMonitor
from fieldphoto.client.dispatcher import SubmitResult, UploadDispatcher

__all__ = [
    "ConnectivityMonitor",
    "EncodedPart",
    "LocalDurableQueue",
    "QueuedUpload",
    "SubmitResult",
    "UploadDispatcher",
]
