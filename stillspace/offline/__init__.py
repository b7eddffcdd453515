from stillspace.offline.connectivity import ConnectivityMonitor, ConnectivityState
from stillspace.offline.records import MeditationRecord, OfflineRecordStore, RecordSyncer, SyncReport
from stillspace.offline.write_queue import DrainReport, OfflineWriteQueue

__all__ = [
    "ConnectivityMonitor",
    "ConnectivityState",
    "DrainReport",
    "MeditationRecord",
    "OfflineRecordStore",
    "OfflineWriteQueue",
    "RecordSyncer",
    "SyncReport",
]
