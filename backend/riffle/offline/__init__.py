# Offline package init
"""
Riffle — Offline-First Journal Sync
=====================================

What:  The device side of the journal: entries written without a
       connection are kept in a local queue and uploaded later.
How:   Small collaborators, built leaf-first and injected into each other.

Module Inventory:
    - storage.py:      LocalStore, the on-device SQLite queue + snapshot cache
    - connectivity.py: ConnectivityObserver, online/offline state and transitions
    - remote.py:       JournalApiClient, create/list calls over httpx
    - sync_engine.py:  SyncEngine, sequential drain of the queue
    - background.py:   register_background_sync(), the "sync-journal" task
    - notifier.py:     BroadcastChannel, SYNC_COMPLETE fan-out to UI surfaces
    - client.py:       OfflineJournal, the facade UI code uses

Flow:
    UI → OfflineJournal.save_entry → API (online) or LocalStore (offline)
    connectivity restored → background run → SyncEngine → SYNC_COMPLETE
"""
