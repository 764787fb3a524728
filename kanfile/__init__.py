# kanfile: a kanban workspace persisted to one JSON file
#
# Components:
#   schema.py     - Records (Board, Column, Card, Sprint, ArchivedCard), enums, FieldUpdate
#   graph.py      - Card dependency graph (Blocks / RelatesTo) with cycle checks
#   snapshot.py   - Whole-workspace state and its JSON form
#   commands.py   - One command per mutation; failed commands change nothing
#   history.py    - Bounded undo/redo of snapshots
#   serializer.py - v2 envelope, metadata, fingerprints, atomic writes
#   store.py      - JSON file store with conflict detection
#   migration.py  - V1 → V2 format migration
#   conflict.py   - Last-write-wins conflict resolution
#   watcher.py    - watchdog-based change detector with per-subscriber queues
#   events.py     - Persistence events and their subscriber registry
#   operations.py - Programmatic command surface
#   exporter.py   - Board import/export
#   workspace.py  - Host tying state, history, store and watcher together
#   retry.py      - Backoff for retryable conflicts
#   driver.py     - Response envelope and subprocess driver
#   cli.py        - Command line front end
#   server.py     - Flask JSON API
#   config.py     - YAML configuration

__version__ = "0.1.0"
