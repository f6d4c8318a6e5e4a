# Taskboard: workspaces, projects and kanban-ordered tasks
#
# Components:
#   schema.py    - Data model (Task, Workspace, Member, Project, User, TaskStatus)
#   store.py     - SQLite document store
#   positions.py - End-of-column position assignment for new tasks
#   query.py     - Facet filtering, display sort and counts
#   board.py     - Client-side board state and optimistic transactions
#   sync.py      - Optimistic reorder protocol with rollback
#   client.py    - HTTP client for the API
#   server.py    - Flask API server
#   migrate.py   - Position backfill CLI
