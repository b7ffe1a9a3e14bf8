"""Research queue scheduler for headless CLI research sessions.

Why not a job queue library?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Only one research session may touch the working tree at a time, and each
session is an external agent process that writes a file, appends to the
session log and commits. What needs care is the boundary around that
process, not the queue itself:

- A file lease with a TTL so cron-fired runs never overlap and a crashed
  run does not block the next one forever.
- Artifact validation that decides completion, retry or failure.
- Recovery of items a crashed run left in ``running``.

SQLite plus a sequential drain loop covers this without a broker.
"""
